"""
ULID generation and timestamp utilities.

Shared clock and date helpers used by the cast table, the timestamp
columns and the soft-delete marker. All helpers return timezone-aware
datetimes; naive input is interpreted in the configured zone.

Features:
    - **utc_now() / now_in():** Timezone-aware "now"
    - **format_datetime() / parse_datetime():** Inverse pair used by casts
    - **advance_timestamp():** Lock values that always move past the previous one
    - **generate_ulid():** Time-sortable, 26-char, Crockford base32

Tags:
    timestamps, ulid, utc, datetime, zoneinfo, entityspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import secrets
import time
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def resolve_timezone(name: str | None) -> tzinfo:
    """Map an IANA zone name to a tzinfo; ``None`` means UTC."""
    if not name or name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def now_in(timezone: str | None = None) -> datetime:
    """Current time in the given zone."""
    return datetime.now(resolve_timezone(timezone))


def format_datetime(value: datetime, fmt: str | None = None, timezone: str | None = None) -> str:
    """Render ``value`` for storage.

    Without ``fmt`` the output is ISO-8601 with seconds precision and offset,
    e.g. ``2024-05-01T10:00:00+00:00``.
    """
    tz = resolve_timezone(timezone)
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    else:
        value = value.astimezone(tz)
    if fmt:
        return value.strftime(fmt)
    return value.isoformat(timespec="seconds")


def parse_datetime(
    value: datetime | date | str | int | float,
    fmt: str | None = None,
    timezone: str | None = None,
) -> datetime:
    """Parse a stored value back into an aware datetime.

    Accepts datetimes, dates, epoch seconds and strings (``fmt`` pattern
    first, then ISO-8601).
    """
    tz = resolve_timezone(timezone)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, bool):
        raise ValueError(f"Cannot interpret {value!r} as a datetime")
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz)
    else:
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz)
        parsed = None
        if fmt:
            try:
                parsed = datetime.strptime(text, fmt)
            except ValueError:
                parsed = None
        if parsed is None:
            parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def generate_ulid() -> str:
    """
    Generate a ULID identifier.

    Format: 26 characters, Crockford base32, time-sortable.
    """
    # Time component: milliseconds since epoch (48 bits -> 10 chars)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)

    # Random component (80 bits -> 16 chars)
    random_part = "".join(secrets.choice(_ENCODING) for _ in range(16))

    return timestamp_chars + random_part


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer as base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


def storage_now(fmt: str | None = None, timezone: str | None = None) -> str:
    """Current time rendered with :func:`format_datetime`."""
    return format_datetime(now_in(timezone), fmt, timezone)


def advance_timestamp(
    previous: Any, fmt: str | None = None, timezone: str | None = None
) -> str:
    """A storage timestamp for "now" that never equals ``previous``.

    Without ``fmt`` the value carries microseconds. When ``previous`` renders
    the same (same tick, or a clock behind the stored value) the moment is
    pushed forward by the format's resolution until it differs.
    """
    moment = now_in(timezone)
    if previous is not None:
        try:
            last = parse_datetime(previous, fmt, timezone)
        except ValueError:
            last = None
        if last is not None and last > moment:
            moment = last

    def render(value: datetime) -> str:
        return value.strftime(fmt) if fmt else value.isoformat(timespec="microseconds")

    step = timedelta(microseconds=1) if not fmt or "%f" in fmt else timedelta(seconds=1)
    stamp = render(moment)
    while previous is not None and stamp == str(previous):
        moment += step
        step *= 2
        stamp = render(moment)
    return stamp
