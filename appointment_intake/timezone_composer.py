"""
Timezone composer.
Resolves IANA timezone identifiers and combines a parsed local date and time
into a UTC instant.
"""

from datetime import date, datetime, time, tzinfo
from typing import Optional

from dateutil import tz as dateutil_tz

from appointment_intake.event_models import ParsedDate, ParsedTime
from appointment_intake.logging_helper import Log


class UnknownTimezoneError(ValueError):
    """Raised when a timezone identifier cannot be resolved."""


def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA timezone identifier (e.g. "Asia/Kolkata") to a tzinfo.

    Raises:
        UnknownTimezoneError: if the name is blank or unknown
    """
    # gettz("") returns the local zone, which would make the result host dependent
    if not isinstance(name, str) or not name.strip():
        raise UnknownTimezoneError("Timezone must be a non-empty IANA identifier")

    resolved = dateutil_tz.gettz(name.strip())
    if resolved is None:
        raise UnknownTimezoneError(f"Unknown timezone: {name}")
    return resolved


def is_valid_timezone(name: str) -> bool:
    try:
        resolve_timezone(name)
    except UnknownTimezoneError:
        return False
    return True


def to_local(instant: datetime, zone: tzinfo) -> datetime:
    """Convert an instant to the given zone. Naive instants are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dateutil_tz.UTC)
    return instant.astimezone(zone)


def local_midnight(day: date, zone: tzinfo) -> datetime:
    """
    Start of the given calendar day in the zone.
    Zones that skip midnight on a DST change start the day at the first valid instant.
    """
    midnight = datetime.combine(day, time.min, tzinfo=zone)
    if not dateutil_tz.datetime_exists(midnight):
        midnight = dateutil_tz.resolve_imaginary(midnight)
    return midnight


def format_utc(instant: datetime) -> str:
    """Format an aware datetime as an ISO-8601 UTC string with millisecond precision."""
    utc = instant.astimezone(dateutil_tz.UTC)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


def compose(
    parsed_date: Optional[ParsedDate],
    parsed_time: Optional[ParsedTime],
    timezone: str
) -> Optional[str]:
    """
    Combine a local calendar date and local clock time into a UTC instant.

    Args:
        parsed_date: Parsed date, or None
        parsed_time: Parsed time, or None
        timezone: IANA timezone the date and time are expressed in

    Returns:
        ISO-8601 UTC string like "2026-01-21T09:30:00.000Z", or None if either input
        is missing or the local time does not exist in the zone (DST gap)
    """
    if parsed_date is None or parsed_time is None:
        return None

    zone = resolve_timezone(timezone)
    local = datetime.combine(
        parsed_date.calendar_date,
        time(parsed_time.hour, parsed_time.minute),
        tzinfo=zone
    )

    try:
        if not dateutil_tz.datetime_exists(local):
            Log.warn(f"Local time {local.replace(tzinfo=None).isoformat()} does not exist in {timezone}")
            Log.kv({"stage": "compose", "result": "failed", "reason": "nonexistent_local_time", "timezone": timezone})
            return None

        # Ambiguous wall times (DST overlap) keep fold=0, the first occurrence
        return format_utc(local)
    except (OverflowError, ValueError) as e:
        Log.warn(f"Cannot convert {local.replace(tzinfo=None).isoformat()} to UTC: {e}")
        Log.kv({"stage": "compose", "result": "failed", "reason": "out_of_range", "timezone": timezone})
        return None
