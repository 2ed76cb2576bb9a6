# Overview: UTC time helpers and JSON serializers shared by models, services and routes.

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical). Invoice years come from here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    - None / "" -> None
    - naive input is taken as UTC already
    - "...Z" and "...+HH:MM" offsets are converted to UTC, then tzinfo is dropped
    - a bare date ("2030-03-01") means midnight UTC
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def billable_days(start: datetime, end: datetime) -> int:
    """Whole days a rental is charged for; a started day counts, minimum one."""
    seconds = (end - start).total_seconds()
    return max(math.ceil(seconds / SECONDS_PER_DAY), 1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Naive values are UTC. Output drops microseconds: 2030-03-01T00:00:00Z"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def decimal_str(value) -> Optional[str]:
    """Serialize Numeric columns without float rounding."""
    if value is None:
        return None
    return str(value)
