from datetime import datetime, timezone
from typing import Optional
import uuid

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_iso() -> str:
    """UTC timestamp like '2025-11-06T09:12:34.123456Z'."""
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def to_iso(dt: datetime) -> str:
    """Same fixed-width form as now_iso, so stored timestamps compare as strings."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by now_iso (or any ISO string). Naive input is taken as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_id() -> str:
    return uuid.uuid4().hex
