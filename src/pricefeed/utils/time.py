from datetime import datetime, timezone
from typing import Final

from loguru import logger

# Tried in order once ISO-8601 parsing has failed.
FALLBACK_DATE_FORMATS: Final[tuple[str, ...]] = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
    "%a, %d %b %Y %H:%M:%S %z",
)

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 1440


def utc_now() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(dt_obj: datetime) -> datetime:
    # Naive datetimes are assumed to be UTC, as per project convention.
    if dt_obj.tzinfo is None:
        return dt_obj.replace(tzinfo=timezone.utc)
    return dt_obj.astimezone(timezone.utc)


def parse_published_at(value: str, now: datetime | None = None) -> datetime:
    """Parses an article publication timestamp into a UTC datetime.

    This function can handle:
    - ISO 8601 with or without fractional seconds, with a 'Z' suffix or a
      numeric UTC offset (e.g. "2025-06-10T14:23:00.123Z").
    - A small set of named fallback formats (see `FALLBACK_DATE_FORMATS`).

    Parsing never raises. If every format fails, a warning is logged and
    `now` (the current time by default) is returned instead.

    Args:
        value: The raw timestamp string.
        now: The fallback instant. Defaults to the current UTC time.

    Returns:
        A timezone-aware datetime in UTC.
    """
    text = value.strip()
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _as_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    for pattern in FALLBACK_DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, pattern))
        except ValueError:  # noqa: PERF203
            continue

    fallback = now if now is not None else utc_now()
    logger.warning(f"Failed to parse publishedAt ('{value}'), defaulting to now.")
    return _as_utc(fallback)


def format_relative_time(published_at: datetime, now: datetime | None = None) -> str:
    """Formats the age of a timestamp, e.g. "45m", "7h, 26m" or "1d, 7h".

    Timestamps in the future are reported as "0m".
    """
    current = _as_utc(now) if now is not None else utc_now()
    elapsed_s = (current - _as_utc(published_at)).total_seconds()
    total_minutes = max(int(elapsed_s // 60), 0)

    if total_minutes < MINUTES_PER_HOUR:
        return f"{total_minutes}m"
    if total_minutes < MINUTES_PER_DAY:
        hours, minutes = divmod(total_minutes, MINUTES_PER_HOUR)
        return f"{hours}h, {minutes}m"
    days, remainder = divmod(total_minutes, MINUTES_PER_DAY)
    return f"{days}d, {remainder // MINUTES_PER_HOUR}h"
