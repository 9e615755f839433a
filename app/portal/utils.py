from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are timezone=False)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def normalize_email(raw: Any) -> str:
    return str(raw or "").strip().lower()


def clean_text(raw: Any) -> str | None:
    """Strip a free-text value; empty strings become None."""
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def parse_bool(raw: Any) -> bool | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return None


def parse_int(raw: Any) -> int | None:
    """Parse an id-like value. Booleans are rejected; blank means None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    value = str(raw).strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD or a full ISO datetime (its time part is dropped). Raises ValueError otherwise."""
    if not s:
        return None
    value = str(s).strip()
    if not value:
        return None
    if len(value) > 10:
        return datetime.fromisoformat(value).date()
    return date.fromisoformat(value)


def like_pattern(term: str) -> str:
    """Substring LIKE pattern in which %, _ and backslash match literally (pair with escape="\\")."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
