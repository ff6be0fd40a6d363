import re
import time
import uuid
from pathlib import Path
from typing import Optional

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


def extension_of(original_name: Optional[str]) -> str:
    """Lower-cased extension of the uploaded filename, or '' if unusable."""
    if not original_name:
        return ""
    suffix = Path(original_name).suffix.lower()
    return suffix if _EXTENSION_RE.match(suffix) else ""


def generate_key(original_name: Optional[str], now: Optional[float] = None) -> str:
    """Storage key: ``<epoch ms>-<uuid4 hex><ext>``.

    The millisecond prefix keeps keys ordered by submission time; the random
    part keeps requests landing in the same millisecond apart.
    """
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis:013d}-{uuid.uuid4().hex}{extension_of(original_name)}"
