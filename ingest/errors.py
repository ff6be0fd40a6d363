"""Error kinds surfaced by the ingest pipeline.

Each error carries a client-safe message and a machine-readable ``kind``.
Backend detail stays on the chained ``__cause__`` and in the server log.
"""


class IngestError(Exception):
    kind = "ingest_error"
    status_code = 500
    default_message = "Upload failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


class ValidationError(IngestError):
    """Bad or missing input. Raised before any side effect."""

    kind = "validation_error"
    status_code = 400
    default_message = "Invalid upload request."


class StorageError(IngestError):
    """Blob write failed. Nothing was persisted."""

    kind = "storage_error"
    default_message = "Failed to store the uploaded file."


class QueueError(IngestError):
    """Enqueue failed after the blob was stored (orphan blob)."""

    kind = "queue_error"
    default_message = "Failed to queue the file for processing."


class PersistenceError(IngestError):
    """Metadata insert or query failed."""

    kind = "persistence_error"
    default_message = "Failed to access image records."
