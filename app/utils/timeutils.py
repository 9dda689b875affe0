from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from app.core.config import settings

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def business_tz():
    return ZoneInfo(settings.business_timezone)


def to_local_naive(value: datetime) -> datetime:
    """Aware datetimes are converted to the business timezone; naive ones are taken as local."""
    if value.tzinfo is None:
        return value
    return value.astimezone(business_tz()).replace(tzinfo=None)


def now_local() -> datetime:
    return datetime.now(business_tz()).replace(tzinfo=None)


def weekday_name(value: datetime) -> str:
    return DAY_NAMES[value.weekday()]


def hhmm(value: datetime) -> str:
    return value.strftime("%H:%M")


def local_to_utc(value: datetime) -> datetime:
    """Stored naive local time as an aware UTC datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=business_tz())
    return value.astimezone(timezone.utc)
