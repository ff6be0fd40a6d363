from pathlib import Path
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import ResourceExistsError

from ingest.work_queue import AzureWorkQueue, LocalWorkQueue, create_work_queue


def test_local_queue_is_fifo(tmp_path):
    queue = LocalWorkQueue(tmp_path / "resize-jobs")
    for payload in ["first", "second", "third"]:
        queue.enqueue(payload)

    assert len(queue) == 3
    assert queue.receive(max_messages=2) == ["first", "second"]
    assert queue.receive() == ["third"]
    assert len(queue) == 0


def test_local_queue_peek(tmp_path):
    queue = LocalWorkQueue(tmp_path)
    queue.enqueue("msg")
    assert queue.receive(delete=False) == ["msg"]
    assert len(queue) == 1


def test_azure_queue_sends_payload_verbatim():
    client = MagicMock()
    client.send_message.return_value.id = "abc"

    message_id = AzureWorkQueue(client, timeout=3).enqueue("eyJhIjoxfQ==")

    assert message_id == "abc"
    client.send_message.assert_called_once_with("eyJhIjoxfQ==", timeout=3)


def test_azure_ensure_ready_creates_queue():
    client = MagicMock()
    AzureWorkQueue(client, timeout=3).ensure_ready()
    client.create_queue.assert_called_once_with(timeout=3)


def test_azure_ensure_ready_tolerates_existing_queue():
    client = MagicMock()
    client.create_queue.side_effect = ResourceExistsError("exists")
    AzureWorkQueue(client).ensure_ready()
    client.create_queue.assert_called_once()


def test_local_queue_creates_spool_dir(tmp_path):
    spool = tmp_path / "queues" / "resize-jobs"
    queue = LocalWorkQueue(spool)
    assert spool.is_dir()

    spool.rmdir()
    queue.ensure_ready()
    assert spool.is_dir()


def test_local_receive_skips_message_taken_by_another_consumer(tmp_path, monkeypatch):
    queue = LocalWorkQueue(tmp_path)
    queue.enqueue("first")
    queue.enqueue("second")

    real_read_text = Path.read_text
    taken = []

    def read_text(path, *args, **kwargs):
        if not taken:
            # a competing consumer removes the oldest message first
            taken.append(path.name)
            path.unlink()
        return real_read_text(path, *args, **kwargs)

    monkeypatch.setattr(Path, "read_text", read_text)

    assert queue.receive() == ["second"]
    assert len(taken) == 1
    assert len(queue) == 0


def test_unknown_backend():
    with pytest.raises(RuntimeError):
        create_work_queue("sqs")
