from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None

def json_body() -> dict:
    """Request JSON as a dict; anything else (missing, list, scalar) becomes {}."""
    from flask import request
    data: Any = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
