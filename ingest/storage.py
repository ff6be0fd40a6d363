import logging
from pathlib import Path
from typing import Iterator, Optional

# STORAGE_BACKEND determines which blob store (local/gcp/azure) gets built.
from ingest.config import (
    AZURE_CONN_STR,
    AZURE_CONTAINER,
    BACKEND_TIMEOUT_SECONDS,
    GCS_BUCKET,
    LOCAL_UPLOAD_DIR,
    PUBLIC_BASE_URL,
    STORAGE_BACKEND,
)

# ------------------------------------------------------------------------------
# CONDITIONAL IMPORTS
# A deployment only needs the SDK of the backend it runs against.
# ------------------------------------------------------------------------------

# 1. Google Cloud Storage SDK
try:
    from google.cloud import storage as gcs
except ImportError:
    gcs = None

# 2. Azure Blob Storage SDK
try:
    from azure.storage.blob import BlobServiceClient, ContentSettings
except ImportError:
    BlobServiceClient = None
    ContentSettings = None

logger = logging.getLogger(__name__)

# Folder inside the GCS bucket for uploaded images
INPUT_PREFIX = "input/"


# ------------------------------------------------------------------------------
# LOCAL FILESYSTEM
# Used when STORAGE_BACKEND="local". Files are served by the API under /uploads.
# ------------------------------------------------------------------------------

class LocalBlobStore:
    def __init__(self, root_dir: Path = LOCAL_UPLOAD_DIR, public_base_url: str = PUBLIC_BASE_URL):
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.ensure_ready()

    def ensure_ready(self) -> None:
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root_dir / key

    def store(self, key: str, data: bytes, content_type: str) -> str:
        # "xb" refuses to replace an existing blob
        with open(self._path(key), "xb") as f:
            f.write(data)
        return f"{self.public_base_url}/uploads/{key}"

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list_keys(self) -> Iterator[str]:
        for path in sorted(self.root_dir.iterdir()):
            if path.is_file():
                yield path.name

    def delete(self, key: str) -> None:
        self._path(key).unlink()


# ------------------------------------------------------------------------------
# GOOGLE CLOUD STORAGE (GCS)
# Used when STORAGE_BACKEND="gcp".
# ------------------------------------------------------------------------------

def _get_gcs_client():
    """Returns an authenticated GCS client."""
    if not gcs:
        raise RuntimeError("google-cloud-storage library is not installed.")
    return gcs.Client()


class GCSBlobStore:
    def __init__(self, bucket, prefix: str = INPUT_PREFIX, timeout: int = BACKEND_TIMEOUT_SECONDS):
        self.bucket = bucket
        self.prefix = prefix
        self.timeout = timeout

    def ensure_ready(self) -> None:
        """Checks if the bucket exists; creates it if not."""
        if not self.bucket.exists(timeout=self.timeout):
            logger.info("Creating GCS bucket %s", self.bucket.name)
            self.bucket.create(timeout=self.timeout)

    def store(self, key: str, data: bytes, content_type: str) -> str:
        blob = self.bucket.blob(f"{self.prefix}{key}")
        # if_generation_match=0 only succeeds when the object does not exist yet
        blob.upload_from_string(
            data,
            content_type=content_type,
            if_generation_match=0,
            timeout=self.timeout,
        )
        return blob.public_url

    def exists(self, key: str) -> bool:
        return self.bucket.blob(f"{self.prefix}{key}").exists(timeout=self.timeout)

    def list_keys(self) -> Iterator[str]:
        for blob in self.bucket.list_blobs(prefix=self.prefix, timeout=self.timeout):
            name = blob.name[len(self.prefix):]
            if name:
                yield name

    def delete(self, key: str) -> None:
        self.bucket.blob(f"{self.prefix}{key}").delete(timeout=self.timeout)


# ------------------------------------------------------------------------------
# AZURE BLOB STORAGE
# Used when STORAGE_BACKEND="azure".
# ------------------------------------------------------------------------------

def _get_azure_client():
    """Creates a BlobServiceClient using the connection string."""
    if not BlobServiceClient:
        raise RuntimeError("azure-storage-blob library is not installed.")
    if not AZURE_CONN_STR:
        raise ValueError("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
    return BlobServiceClient.from_connection_string(AZURE_CONN_STR)


class AzureBlobStore:
    def __init__(self, container_client, timeout: int = BACKEND_TIMEOUT_SECONDS):
        self.container_client = container_client
        self.timeout = timeout

    def ensure_ready(self) -> None:
        """Ensures the Azure container exists."""
        if not self.container_client.exists(timeout=self.timeout):
            logger.info("Creating Azure container %s", self.container_client.container_name)
            self.container_client.create_container(timeout=self.timeout)

    def store(self, key: str, data: bytes, content_type: str) -> str:
        blob_client = self.container_client.get_blob_client(key)
        blob_client.upload_blob(
            data,
            overwrite=False,
            content_settings=ContentSettings(content_type=content_type),
            timeout=self.timeout,
        )
        return blob_client.url

    def exists(self, key: str) -> bool:
        return self.container_client.get_blob_client(key).exists(timeout=self.timeout)

    def list_keys(self) -> Iterator[str]:
        for props in self.container_client.list_blobs(timeout=self.timeout):
            yield props.name

    def delete(self, key: str) -> None:
        self.container_client.delete_blob(key, timeout=self.timeout)


# ------------------------------------------------------------------------------
# FACTORY
# Called once at process start; the result is shared by every request.
# Each backend makes sure its directory, bucket or container exists.
# ------------------------------------------------------------------------------

def create_blob_store(backend: Optional[str] = None):
    backend = backend or STORAGE_BACKEND

    if backend == "local":
        store = LocalBlobStore()

    elif backend == "gcp":
        if not GCS_BUCKET:
            raise ValueError("GCS_BUCKET env var is required for GCP backend")
        store = GCSBlobStore(_get_gcs_client().bucket(GCS_BUCKET))

    elif backend == "azure":
        if not AZURE_CONTAINER:
            raise ValueError("AZURE_CONTAINER env var is required for Azure backend")
        store = AzureBlobStore(_get_azure_client().get_container_client(AZURE_CONTAINER))

    else:
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")

    store.ensure_ready()
    return store
