from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Union

# fixed width so stored timestamps compare correctly as text
_DB_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utcnow() -> datetime:
    """Timezone-aware 'now' in UTC."""
    return datetime.now(timezone.utc)


def to_db(dt: datetime) -> str:
    """Serialize a datetime for storage. Naive values are treated as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_DB_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, _DB_FORMAT).replace(tzinfo=timezone.utc)


def parse_date_filter(
    value: Union[str, date, datetime, None], end_of_day: bool = False
) -> Optional[str]:
    """
    Normalize a user supplied date/datetime filter to the storage format.

    - None / "" -> None
    - "YYYY-MM-DD" or date -> start of that day (or end of it when end_of_day)
    - ISO datetimes ("...Z" accepted) are converted to UTC
    Raises ValueError on garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_db(value)
    if isinstance(value, date):
        value = value.isoformat()
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    if len(s) == 10:
        day = date.fromisoformat(s)
        moment = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        if end_of_day:
            moment = moment.replace(hour=23, minute=59, second=59, microsecond=999999)
        return to_db(moment)
    return to_db(datetime.fromisoformat(s))


def to_iso(value: Optional[str]) -> Optional[str]:
    """Storage timestamp -> ISO-8601 with trailing 'Z' for responses."""
    dt = from_db(value)
    if dt is None:
        return None
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")
