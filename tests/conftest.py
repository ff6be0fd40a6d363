import threading

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_pipeline
from ingest.metadata import MetadataStore
from ingest.pipeline import IngestPipeline

BLOB_BASE_URL = "https://example.blob.core.windows.net/images"


class FakeBlobStore:
    def __init__(self):
        self.blobs = {}
        self.fail = False
        self._lock = threading.Lock()

    def store(self, key, data, content_type):
        if self.fail:
            raise ConnectionError("blob service unavailable at 10.0.0.7")
        with self._lock:
            if key in self.blobs:
                raise FileExistsError(key)
            self.blobs[key] = (data, content_type)
        return f"{BLOB_BASE_URL}/{key}"

    def exists(self, key):
        return key in self.blobs

    def list_keys(self):
        return list(self.blobs)

    def delete(self, key):
        del self.blobs[key]


class FakeWorkQueue:
    def __init__(self):
        self.messages = []
        self.fail = False

    def enqueue(self, payload):
        if self.fail:
            raise TimeoutError("queue send timed out")
        self.messages.append(payload)
        return str(len(self.messages))


class FakeMetadataStore:
    """In-memory stand-in for failure injection and thread-heavy tests."""

    def __init__(self):
        self.rows = []
        self.fail = False

    def insert_job(self, filename, url, width, height):
        if self.fail:
            raise ConnectionError("database connection refused")
        self.rows.append({"filename": filename, "url": url, "width": width, "height": height})

    def list_recent(self, limit):
        if self.fail:
            raise ConnectionError("database connection refused")
        return []


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def work_queue():
    return FakeWorkQueue()


@pytest.fixture
def metadata_store(tmp_path):
    store = MetadataStore(f"sqlite:///{tmp_path / 'images.db'}")
    store.create_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def pipeline(blob_store, work_queue, metadata_store):
    return IngestPipeline(blob_store, work_queue, metadata_store, max_upload_bytes=64 * 1024)


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()
