"""Timestamp helpers for task metadata."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d", "%m/%d/%Y", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def utc_day(value: Any) -> str:
    """Return the UTC calendar day (YYYY-MM-DD) of a timestamp, or "" if unparseable.

    Naive timestamps are taken to be UTC, matching what the task runner writes.
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, str):
        token = value.strip()
        if _DATE_ONLY_RE.match(token):
            try:
                return date.fromisoformat(token).isoformat()
            except ValueError:
                return ""
        parsed = _parse_datetime_token(token)
        if parsed is None:
            return ""
        dt = parsed
    else:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date().isoformat()
