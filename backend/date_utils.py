"""Timestamp parsing and formatting helpers shared by parsers and repositories."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

logger = logging.getLogger("agent_observer.parser")

# Fixed UTC patterns tried after the offset-qualified form, in order.
_UTC_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ")


def _parse_offset_timestamp(token: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(token.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive values are not offset-qualified; leave them to the fixed patterns.
    if parsed.tzinfo is None:
        return None
    return parsed


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a log timestamp into an aware datetime.

    Returns None when the value is empty or matches none of the accepted
    formats. None means "unknown", never the epoch.
    """
    token = (value or "").strip()
    if not token:
        return None

    parsed = _parse_offset_timestamp(token)
    if parsed is not None:
        return parsed

    for fmt in _UTC_FORMATS:
        try:
            return datetime.strptime(token, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    logger.warning("Failed to parse timestamp %r", token)
    return None


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_storage(value: datetime | str | None) -> str | None:
    """Normalize a datetime (or pre-formatted string) for a TEXT timestamp column."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value
