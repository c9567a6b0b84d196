from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def to_utc(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    # naive values from the log tables are stored as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_utc_iso(value: datetime | str | None) -> str | None:
    parsed = to_utc(value)
    return parsed.isoformat() if parsed is not None else None


def _coerce_date(value: date | str | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _coerce_time(value: time | str | None) -> time | None:
    if value is None:
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return time.fromisoformat(text)
    except ValueError:
        return None


# logs split into date + HH:MM columns; missing time falls back to default_hour
def combine_date_time(
    day: date | str | None,
    clock: time | str | None,
    *,
    default_hour: int | None = None,
) -> datetime | None:
    parsed_day = _coerce_date(day)
    if parsed_day is None:
        return None
    parsed_clock = _coerce_time(clock)
    if parsed_clock is None:
        if default_hour is None:
            return None
        parsed_clock = time(hour=max(0, min(23, int(default_hour))))
    combined = datetime.combine(parsed_day, parsed_clock.replace(tzinfo=None))
    return combined.replace(tzinfo=timezone.utc)


def floor_to_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def window_bounds(days_back: int, *, now: datetime | None = None) -> tuple[datetime, datetime]:
    end = to_utc(now) if now is not None else utc_now()
    start = end - timedelta(days=max(0, int(days_back)))
    return start, end
