import re
from datetime import datetime

import pytest

from ingest.job_schema import decode_message
from ingest.pipeline import IngestPipeline

from conftest import BLOB_BASE_URL, FakeMetadataStore

PNG_10KB = b"\x89PNG\r\n\x1a\n" + b"\x00" * (10 * 1024 - 8)


def _upload(client, data=PNG_10KB, name="photo.png", width="800", height="600"):
    form = {}
    if width is not None:
        form["width"] = width
    if height is not None:
        form["height"] = height
    files = {"image": (name, data, "image/png")} if data is not None else None
    return client.post("/upload", data=form, files=files)


def _assert_no_side_effects(blob_store, work_queue, metadata_store):
    assert blob_store.blobs == {}
    assert work_queue.messages == []
    assert metadata_store.list_recent(100) == []


def test_upload_then_list(client):
    resp = _upload(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"]
    assert re.fullmatch(re.escape(BLOB_BASE_URL) + r"/\d{13}-[0-9a-f]{32}\.png", body["fileUrl"])

    images = client.get("/images").json()
    assert images[0]["width"] == 800
    assert images[0]["height"] == 600
    assert images[0]["status"] == "pending"
    assert images[0]["url"] == body["fileUrl"]


def test_upload_stores_bytes_and_queues_message(client, blob_store, work_queue):
    resp = _upload(client, width=" 1024 ", height="768")
    assert resp.status_code == 200

    (key, (data, content_type)), = blob_store.blobs.items()
    assert data == PNG_10KB
    assert content_type == "image/png"

    message = decode_message(work_queue.messages[0])
    assert message.file_url == resp.json()["fileUrl"]
    assert message.filename == key
    assert (message.width, message.height) == (1024, 768)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"data": None},
        {"data": b""},
        {"width": None},
        {"height": None},
        {"width": ""},
        {"width": "abc"},
        {"height": "12.5"},
        {"width": "0"},
        {"height": "-600"},
        {"width": "99999999"},
        {"data": b"x" * (64 * 1024 + 1)},
    ],
)
def test_invalid_upload_has_no_side_effects(client, blob_store, work_queue, metadata_store, kwargs):
    resp = _upload(client, **kwargs)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation_error"
    assert resp.json()["error"]
    _assert_no_side_effects(blob_store, work_queue, metadata_store)


def test_non_file_image_field_is_rejected(client, blob_store, work_queue, metadata_store):
    resp = client.post(
        "/upload",
        files={"image": (None, "not a file"), "width": (None, "10"), "height": (None, "10")},
    )
    assert resp.status_code == 400
    _assert_no_side_effects(blob_store, work_queue, metadata_store)


def test_storage_failure(client, blob_store, work_queue, metadata_store):
    blob_store.fail = True
    resp = _upload(client)
    assert resp.status_code == 500
    assert resp.json()["kind"] == "storage_error"
    assert "10.0.0.7" not in resp.text
    assert work_queue.messages == []
    assert metadata_store.list_recent(10) == []


def test_queue_failure_leaves_blob_and_next_request_succeeds(client, blob_store, work_queue, metadata_store):
    work_queue.fail = True
    resp = _upload(client)
    assert resp.status_code == 500
    assert resp.json()["kind"] == "queue_error"
    assert "timed out" not in resp.text

    # orphan blob is still there, nothing recorded
    (orphan_key,) = blob_store.blobs
    assert blob_store.exists(orphan_key)
    assert metadata_store.list_recent(10) == []

    work_queue.fail = False
    resp = _upload(client, width="300", height="200")
    assert resp.status_code == 200
    images = client.get("/images").json()
    assert len(images) == 1
    assert images[0]["width"] == 300
    assert images[0]["filename"] != orphan_key


def test_persistence_failure_leaves_queued_message(client, blob_store, work_queue):
    from api.main import app, get_pipeline

    failing_store = FakeMetadataStore()
    failing_store.fail = True
    app.dependency_overrides[get_pipeline] = lambda: IngestPipeline(blob_store, work_queue, failing_store)

    resp = _upload(client)
    assert resp.status_code == 500
    assert resp.json()["kind"] == "persistence_error"
    assert len(blob_store.blobs) == 1
    assert len(work_queue.messages) == 1
    assert failing_store.rows == []


def test_list_failure_returns_500(client, blob_store, work_queue):
    from api.main import app, get_pipeline

    failing_store = FakeMetadataStore()
    failing_store.fail = True
    app.dependency_overrides[get_pipeline] = lambda: IngestPipeline(blob_store, work_queue, failing_store)

    resp = client.get("/images")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch images.", "kind": "persistence_error"}


def test_images_returns_ten_newest_first(client):
    for i in range(15):
        assert _upload(client, width=str(100 + i)).status_code == 200

    images = client.get("/images").json()
    assert len(images) == 10
    created = [datetime.fromisoformat(img["created_at"]) for img in images]
    # database timestamps can share a second; id breaks the tie
    assert all(a >= b for a, b in zip(created, created[1:]))
    assert [img["width"] for img in images] == list(range(114, 104, -1))


def test_home_page(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert 'action="/upload"' in resp.text
    assert 'name="width"' in resp.text


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_oversized_body_rejected_before_parsing(client, blob_store, work_queue, metadata_store, monkeypatch):
    import api.main

    monkeypatch.setattr(api.main, "UPLOAD_BODY_LIMIT", 4 * 1024)

    resp = _upload(client)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation_error"
    assert "too large" in resp.json()["error"]
    _assert_no_side_effects(blob_store, work_queue, metadata_store)


def test_body_limit_only_applies_to_upload(client, monkeypatch):
    import api.main

    monkeypatch.setattr(api.main, "UPLOAD_BODY_LIMIT", 0)
    assert client.get("/health").status_code == 200
