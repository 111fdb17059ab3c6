"""444 Track IDs: ``444-YYYY-XXXX-XXXXXX`` public identifiers for releases."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import re
import secrets
from typing import Optional


TRACK_ID_PATTERN = re.compile(r"^444-\d{4}-[A-F0-9]{4}-[A-F0-9]{6}$")


def generate_track_id(user_id: str, *, now: Optional[datetime] = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    user_hash = hashlib.md5(user_id.encode("utf-8")).hexdigest()[:4].upper()
    suffix = secrets.token_hex(3).upper()
    return f"444-{year}-{user_hash}-{suffix}"


def is_valid_track_id(value: Optional[str]) -> bool:
    return bool(value) and TRACK_ID_PATTERN.match(value) is not None
