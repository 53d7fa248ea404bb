"""Timestamp handling: lax input -> epoch milliseconds -> strict ISO output."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

import pendulum
from pendulum.parsing.exceptions import ParserError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts various formats:
    - 2026-02-02T22:21:29.975Z
    - 2026-02-02 22:21:29.975359+00
    - 2026-02-02 22:21+00
    - 2026-02-02

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def to_ms(dt: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds (naive means UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    # Integer arithmetic: float timestamps drift by one millisecond on round-trip.
    return calendar.timegm(dt.utctimetuple()) * 1000 + dt.microsecond // 1000


# Largest instant a datetime can hold; anything later cannot be formatted back.
MAX_TIMESTAMP_MS = to_ms(datetime.max.replace(tzinfo=timezone.utc))


def from_ms(ms: int) -> datetime:
    """Convert epoch milliseconds to a UTC datetime."""
    return _EPOCH + ms * _ONE_MS


def now_ms() -> int:
    """Return the current time as epoch milliseconds."""
    return to_ms(now_utc())


def parse_timestamp_ms(value: object) -> int | None:
    """Coerce a wire timestamp into epoch milliseconds.

    Integers (and numeric strings) are taken as epoch milliseconds, which is what
    browser clients send.  Anything else is parsed as a date/time string.  ``None``,
    empty strings and zero mean "unset" and return ``None``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Timestamp must be a string or integer")
    if isinstance(value, (int, float)):
        try:
            ms = int(value)
        except OverflowError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    elif isinstance(value, datetime):
        ms = to_ms(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            ms = int(text)
        else:
            try:
                ms = to_ms(parse_datetime(text))
            except (ValueError, ParserError) as exc:
                raise ValueError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ValueError("Timestamp must be a string or integer")
    if ms < 0:
        raise ValueError("Timestamp must not be negative")
    if ms > MAX_TIMESTAMP_MS:
        raise ValueError("Timestamp is past the year 9999")
    return ms or None


def format_ms(ms: int) -> str:
    """Format epoch milliseconds as ISO 8601 for JSON serialization."""
    return from_ms(ms).isoformat(timespec="milliseconds")
