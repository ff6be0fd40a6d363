"""
Ingest pipeline: validate an upload, then store -> enqueue -> record.

The three side effects run in that order and stop at the first failure.
Nothing is retried or rolled back here; a failure after the store leaves an
orphan blob, a failure after the enqueue leaves an orphan message. Both are
logged with the generated key so they can be reconciled out of band
(see tools/reconcile_orphans.py).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from ingest.config import LISTING_LIMIT, MAX_DIMENSION, MAX_UPLOAD_BYTES
from ingest.errors import PersistenceError, QueueError, StorageError, ValidationError
from ingest.job_schema import ImageJob, ResizeMessage, encode_message
from ingest.keys import generate_key

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class SagaStep(str, Enum):
    STORE = "store"
    ENQUEUE = "enqueue"
    RECORD = "record"


@dataclass
class SubmitResult:
    key: str
    locator: str


@dataclass
class _SagaState:
    key: str
    locator: Optional[str] = None
    completed: List[SagaStep] = field(default_factory=list)


def parse_dimension(name: str, raw: Union[str, int, None], maximum: int = MAX_DIMENSION) -> int:
    """Parses a width/height form value into a positive int, or raises ValidationError."""
    if raw is None:
        raise ValidationError(f"{name} is required.")
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be a positive integer.")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ValidationError(f"{name} is required.")
        if not text.isdigit() or not text.isascii():
            raise ValidationError(f"{name} must be a positive integer.")
        value = int(text)
    else:
        raise ValidationError(f"{name} must be a positive integer.")
    if value <= 0:
        raise ValidationError(f"{name} must be a positive integer.")
    if value > maximum:
        raise ValidationError(f"{name} must not exceed {maximum}.")
    return value


class IngestPipeline:
    """Owns the store -> enqueue -> record sequence for one upload at a time.

    The clients are built once per process and shared; the pipeline keeps no
    per-request state on itself, so concurrent submits are independent.
    """

    def __init__(
        self,
        blob_store,
        work_queue,
        metadata_store,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        max_dimension: int = MAX_DIMENSION,
    ):
        self.blob_store = blob_store
        self.work_queue = work_queue
        self.metadata_store = metadata_store
        self.max_upload_bytes = max_upload_bytes
        self.max_dimension = max_dimension

    def validate(self, file_bytes: Optional[bytes], width, height) -> tuple:
        if not file_bytes:
            raise ValidationError("No file uploaded.")
        if len(file_bytes) > self.max_upload_bytes:
            raise ValidationError(f"File too large (max {self.max_upload_bytes} bytes).")
        return (
            parse_dimension("width", width, self.max_dimension),
            parse_dimension("height", height, self.max_dimension),
        )

    def submit(
        self,
        file_bytes: Optional[bytes],
        original_name: Optional[str],
        mime_type: Optional[str],
        width,
        height,
    ) -> SubmitResult:
        width, height = self.validate(file_bytes, width, height)

        state = _SagaState(key=generate_key(original_name))

        # 1. Durable copy of the raw bytes
        try:
            state.locator = self.blob_store.store(state.key, file_bytes, mime_type or DEFAULT_CONTENT_TYPE)
        except Exception as exc:
            self._log_failure(SagaStep.STORE, state, exc)
            raise StorageError() from exc
        state.completed.append(SagaStep.STORE)

        # 2. Hand the job to the worker
        message = ResizeMessage(file_url=state.locator, width=width, height=height, filename=state.key)
        try:
            self.work_queue.enqueue(encode_message(message))
        except Exception as exc:
            self._log_failure(SagaStep.ENQUEUE, state, exc)
            raise QueueError() from exc
        state.completed.append(SagaStep.ENQUEUE)

        # 3. Status row the client can poll
        try:
            self.metadata_store.insert_job(state.key, state.locator, width, height)
        except Exception as exc:
            self._log_failure(SagaStep.RECORD, state, exc)
            raise PersistenceError("Failed to record the upload.") from exc
        state.completed.append(SagaStep.RECORD)

        logger.info("Accepted upload key=%s size=%d target=%dx%d", state.key, len(file_bytes), width, height)
        return SubmitResult(key=state.key, locator=state.locator)

    @staticmethod
    def _log_failure(step: SagaStep, state: _SagaState, exc: Exception) -> None:
        logger.error(
            "Ingest failed step=%s key=%s locator=%s completed=%s error=%s: %s",
            step.value,
            state.key,
            state.locator,
            [s.value for s in state.completed],
            type(exc).__name__,
            exc,
        )


def list_recent(metadata_store, limit: int = LISTING_LIMIT) -> List[ImageJob]:
    """Newest ``limit`` job records, or PersistenceError. Never a partial page."""
    try:
        return list(metadata_store.list_recent(limit))
    except Exception as exc:
        logger.error("Listing images failed: %s: %s", type(exc).__name__, exc)
        raise PersistenceError("Failed to fetch images.") from exc
