import base64
import binascii
import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


# Status only moves forward: pending -> processing -> done | failed
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    return JobStatus(new) in ALLOWED_TRANSITIONS[JobStatus(current)]


def predecessors(status: JobStatus) -> list[JobStatus]:
    """Statuses from which ``status`` may be entered."""
    return [src for src, targets in ALLOWED_TRANSITIONS.items() if JobStatus(status) in targets]


class ImageJob(BaseModel):
    """One row of the images table: a submitted resize request."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    filename: str            # storage key, unique per job
    url: str                 # where the source image is stored
    width: PositiveInt
    height: PositiveInt
    status: JobStatus = JobStatus.PENDING
    created_at: Optional[datetime] = None


class ResizeMessage(BaseModel):
    """Payload consumed by the resize worker.

    ``filename`` is the storage key; the worker uses it to find the row it
    has to update.
    """

    model_config = ConfigDict(populate_by_name=True)

    file_url: str = Field(alias="fileUrl")
    width: PositiveInt
    height: PositiveInt
    filename: str


def encode_message(message: ResizeMessage) -> str:
    """JSON, then base64, so the payload is safe for text-only queues."""
    raw = json.dumps(message.model_dump(by_alias=True), separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_message(payload: str) -> ResizeMessage:
    try:
        raw = base64.b64decode(payload, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Malformed queue payload: {exc}") from exc
    return ResizeMessage.model_validate(data)
