import re
from typing import Any

from app.errors import ValidationError

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CITY_RE = re.compile(r"^[^\d\W][\w .'\-]{0,98}$", re.UNICODE)

_TRUTHY = {"1", "true", "yes", "on"}


def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    if not isinstance(val, str):
        val = str(val)
    s = re.sub(r"\s+", " ", val).strip()
    if not s:
        return None
    return s[:max_len]

def is_valid_email(val: str | None) -> bool:
    if not val:
        return False
    return bool(_EMAIL_RE.match(val))

def is_valid_city(val: str | None) -> bool:
    if not val:
        return True
    return bool(_CITY_RE.match(val))

def parse_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in _TRUTHY

def parse_int(val: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """Integer coercion that rejects bools/floats-with-fractions and reports the field name."""
    if val is None or (isinstance(val, str) and not val.strip()):
        if required:
            raise ValidationError(f"{field} is required", {"field": field})
        return None
    if isinstance(val, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(val, float) and not val.is_integer():
        raise ValidationError(f"{field} must be an integer", {"field": field})
    try:
        out = int(val)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if minimum is not None and out < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", {"field": field})
    return out

def require_choice(val: Any, field: str, choices) -> str:
    if val not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(choices)}",
            {"field": field, "allowed": list(choices)},
        )
    return val
