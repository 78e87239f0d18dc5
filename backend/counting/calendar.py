"""
Operating Calendar — which calendar date a shift's counts are filed under.

Shifts 1 and 2 file under the local calendar date. The overnight shift
spans midnight: anything entered before the cutoff hour still belongs to
the shift that started the previous evening.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from core.config import get_settings


def local_now(now: datetime | None = None) -> datetime:
    """Current wall clock in the operating timezone. Naive inputs are treated as UTC."""
    tz = ZoneInfo(get_settings().operating_timezone)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def operating_date(shift: int | None = None, now: datetime | None = None) -> date:
    settings = get_settings()
    local = local_now(now)
    if shift == settings.overnight_shift and local.hour < settings.overnight_cutoff_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def previous_operating_date(check_date: date) -> date:
    return check_date - timedelta(days=1)


def is_overnight(shift: int) -> bool:
    return shift == get_settings().overnight_shift
