import logging
import time
import uuid
from pathlib import Path
from typing import List, Optional

from ingest.config import (
    AZURE_CONN_STR,
    AZURE_QUEUE_NAME,
    BACKEND_TIMEOUT_SECONDS,
    LOCAL_QUEUE_DIR,
    QUEUE_BACKEND,
)

try:
    from azure.core.exceptions import ResourceExistsError
    from azure.storage.queue import QueueClient
except ImportError:
    ResourceExistsError = None
    QueueClient = None

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# LOCAL SPOOL DIRECTORY
# Used when QUEUE_BACKEND="local". One file per message, oldest first.
# ------------------------------------------------------------------------------

class LocalWorkQueue:
    def __init__(self, spool_dir: Path = LOCAL_QUEUE_DIR / AZURE_QUEUE_NAME):
        self.spool_dir = Path(spool_dir)
        self.ensure_ready()

    def ensure_ready(self) -> None:
        self.spool_dir.mkdir(parents=True, exist_ok=True)

    def enqueue(self, payload: str) -> str:
        message_id = f"{time.time_ns():020d}-{uuid.uuid4().hex}"
        tmp = self.spool_dir / f".{message_id}.tmp"
        tmp.write_text(payload, encoding="ascii")
        # rename is atomic, so readers never see a half-written message
        tmp.rename(self.spool_dir / f"{message_id}.msg")
        return message_id

    def receive(self, max_messages: int = 32, delete: bool = True) -> List[str]:
        """Returns up to ``max_messages`` payloads in arrival order."""
        payloads = []
        for path in sorted(self.spool_dir.glob("*.msg"))[:max_messages]:
            try:
                payload = path.read_text(encoding="ascii")
                if delete:
                    path.unlink()
            except FileNotFoundError:
                # another consumer took it first
                continue
            payloads.append(payload)
        return payloads

    def __len__(self) -> int:
        return sum(1 for _ in self.spool_dir.glob("*.msg"))


# ------------------------------------------------------------------------------
# AZURE QUEUE STORAGE
# Used when QUEUE_BACKEND="azure".
# ------------------------------------------------------------------------------

def _get_azure_queue_client(queue_name: str):
    if not QueueClient:
        raise RuntimeError("azure-storage-queue library is not installed.")
    if not AZURE_CONN_STR:
        raise ValueError("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
    return QueueClient.from_connection_string(AZURE_CONN_STR, queue_name)


class AzureWorkQueue:
    def __init__(self, queue_client, timeout: int = BACKEND_TIMEOUT_SECONDS):
        self.queue_client = queue_client
        self.timeout = timeout

    def ensure_ready(self) -> None:
        try:
            self.queue_client.create_queue(timeout=self.timeout)
            logger.info("Created Azure queue %s", self.queue_client.queue_name)
        except ResourceExistsError:
            pass

    def enqueue(self, payload: str) -> str:
        # payload is already base64 text; the client's default policy sends it as is
        message = self.queue_client.send_message(payload, timeout=self.timeout)
        return message.id


def create_work_queue(backend: Optional[str] = None):
    backend = backend or QUEUE_BACKEND

    if backend == "local":
        queue = LocalWorkQueue()

    elif backend == "azure":
        queue = AzureWorkQueue(_get_azure_queue_client(AZURE_QUEUE_NAME))

    else:
        raise RuntimeError(f"Unsupported QUEUE_BACKEND: {backend}")

    queue.ensure_ready()
    return queue
