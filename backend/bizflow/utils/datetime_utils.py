"""
Datetime and JSON-column helpers
Timezone-aware helpers; SQLite hands back naive datetimes, so values read from the
database go through ensure_utc before being compared with utc_now().
"""
import json
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current UTC time with timezone awareness"""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as ISO format string"""
    return datetime.now(timezone.utc).isoformat()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string (a trailing 'Z' is accepted) into an aware UTC datetime"""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_jsonable(value: Any) -> Any:
    """Normalize a value for a JSON column (datetimes to ISO strings, UUIDs to str)"""
    return json.loads(json.dumps(value, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    return str(value)
