# Overview: Clock and timestamp helpers; every stored datetime is naive UTC.

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def within_window(start: datetime, end: datetime, now: datetime) -> bool:
    """True while `now` is inside [start, end); the end instant is already outside."""
    return start <= now < end


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse a client timestamp ("2026-10-19T14:00", "...Z" or "...+05:00")
    into naive UTC. Blank input yields None; offset-less input is taken as UTC.
    """
    text = (value or "").strip()
    if not text:
        return None
    parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: datetime | None) -> str | None:
    """Render a stored timestamp as second-precision ISO-8601 with a 'Z' suffix."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
