"""Alarm time parsing.

Turns user-facing alarm strings into the UTC datetime the strap expects:

- ``"2025-01-12 07:30"`` / ``"2025-01-12T07:30:15"``: a specific local date and time
- ``"07:30"`` / ``"07:30:15"``: the next occurrence of that local time of day
- ``"min"``, ``"5min"``, ``"10min"``, ``"15min"``, ``"30min"``, ``"hour"``: relative to now
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from strap_controller.const import LOCAL_TZ

_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M")
_TIME_FORMATS = ("%H:%M:%S", "%H:%M")


class AlarmTimeType(Enum):
    SPECIFIC_DATETIME = "specific_datetime"
    SPECIFIC_TIME = "specific_time"
    RELATIVE = "relative"


_RELATIVE_TOKENS: dict[str, timedelta] = {
    "minute": timedelta(minutes=1),
    "1min": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "5minute": timedelta(minutes=5),
    "5min": timedelta(minutes=5),
    "10minute": timedelta(minutes=10),
    "10min": timedelta(minutes=10),
    "15minute": timedelta(minutes=15),
    "15min": timedelta(minutes=15),
    "30minute": timedelta(minutes=30),
    "30min": timedelta(minutes=30),
    "hour": timedelta(hours=1),
    "h": timedelta(hours=1),
}


@dataclass(frozen=True)
class ParsedAlarmTime:
    type: AlarmTimeType
    specific_datetime: datetime | None = None
    specific_time: time | None = None
    offset: timedelta | None = None


def parse_alarm_time(text: str) -> ParsedAlarmTime:
    """Parse an alarm string.

    Raises:
        ValueError: If the string is empty or matches none of the accepted forms

    """
    value = text.strip() if text else ""
    if not value:
        msg = "Alarm time string cannot be empty"
        raise ValueError(msg)

    for fmt in _DATETIME_FORMATS:
        try:
            return ParsedAlarmTime(AlarmTimeType.SPECIFIC_DATETIME, specific_datetime=datetime.strptime(value, fmt))
        except ValueError:
            continue

    for fmt in _TIME_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return ParsedAlarmTime(AlarmTimeType.SPECIFIC_TIME, specific_time=parsed.time())

    offset = _RELATIVE_TOKENS.get(value.casefold())
    if offset is None:
        msg = (
            f"Invalid alarm time string: '{text}'. Expected a date/time, a time of day, "
            "or a relative offset (e.g. 'min', '5min', 'hour')"
        )
        raise ValueError(msg)
    return ParsedAlarmTime(AlarmTimeType.RELATIVE, offset=offset)


def alarm_time_to_utc(
    parsed: ParsedAlarmTime,
    now: datetime | None = None,
    tz: ZoneInfo = LOCAL_TZ,
) -> datetime:
    """Resolve a parsed alarm into an aware UTC datetime.

    Naive dates and times are interpreted in ``tz`` (the host's local zone by
    default). A time of day that has already passed today rolls over to
    tomorrow.

    Args:
        parsed: Result of parse_alarm_time
        now: Reference instant (aware); defaults to the current time
        tz: Zone for naive values

    """
    now = now or datetime.now(UTC)

    match parsed.type:
        case AlarmTimeType.SPECIFIC_DATETIME:
            assert parsed.specific_datetime is not None
            moment = parsed.specific_datetime
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=tz)
            return moment.astimezone(UTC)
        case AlarmTimeType.SPECIFIC_TIME:
            assert parsed.specific_time is not None
            local_now = now.astimezone(tz)
            candidate = datetime.combine(local_now.date(), parsed.specific_time, tzinfo=tz)
            if candidate < local_now:
                candidate = datetime.combine(local_now.date() + timedelta(days=1), parsed.specific_time, tzinfo=tz)
            return candidate.astimezone(UTC)
        case AlarmTimeType.RELATIVE:
            assert parsed.offset is not None
            return now.astimezone(UTC) + parsed.offset
        case _:
            msg = f"Unknown alarm time type: {parsed.type}"
            raise ValueError(msg)


def resolve_alarm_time(text: str, now: datetime | None = None, tz: ZoneInfo = LOCAL_TZ) -> datetime:
    """Parse and resolve in one step."""
    return alarm_time_to_utc(parse_alarm_time(text), now=now, tz=tz)
