"""ISO-8601 helpers shared by the parser, the store and the dedupe engine."""

from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as date_parser


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as local wall-clock time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


def to_iso_utc(value: datetime) -> str:
    """Serialize as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    text = as_utc(value).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_iso(raw: str | datetime | None) -> datetime | None:
    """Parse a stored ISO timestamp into an aware UTC datetime.

    Naive stored values are read as UTC. Unparseable values return None.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
