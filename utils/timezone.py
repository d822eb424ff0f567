"""
Time handling for billing.

Instants are always timezone-aware UTC. Due dates, reminder dates and
"days overdue" are calendar dates in the business timezone, and are only
derived from an instant at the point they are needed (local_date).
Provider timestamps arrive either as epoch seconds (Stripe, Razorpay) or as
ISO 8601 strings (PayPal).
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """Current instant in UTC. Use instead of datetime.now()."""
    return datetime.now(timezone.utc)


def _require_aware(dt: datetime) -> None:
    if dt.tzinfo is None:
        raise ValueError("Cannot convert naive datetime. Datetime must be timezone-aware.")


def to_utc(dt: datetime) -> datetime:
    _require_aware(dt)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """
    Same instant in an IANA timezone such as "Asia/Kolkata".

    Raises:
        ValueError: naive datetime or unknown timezone name
    """
    _require_aware(dt)
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")
    return dt.astimezone(zone)


def local_date(dt: datetime, tz_name: str) -> date:
    """Calendar date of an instant in the business timezone."""
    return to_local(dt, tz_name).date()


def from_unix(timestamp: int | float | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """ISO 8601 with an offset or trailing 'Z', as UTC. Offset-less strings raise ValueError."""
    dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00") if iso_string.endswith("Z") else iso_string)
    if dt.tzinfo is None:
        raise ValueError("Cannot parse naive datetime string. Include a 'Z' or '+00:00' offset.")
    return dt.astimezone(timezone.utc)
