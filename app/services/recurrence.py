# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Recurrence math: pure functions, no I/O.

Weekdays are numbered 0=Sunday .. 6=Saturday, the convention configs are
authored in. Scheduled times are resolved in the config's own timezone and
compared in UTC, so DST gaps shift a run forward rather than skipping it.

A run stays due from its scheduled time until the response window it would
open has elapsed. A tick that arrives late (a slow previous tick, a restart)
still materialises the day's instance; insert-if-absent keeps that to one.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.models.domain import StandupConfig


def platform_weekday(day: date) -> int:
    return day.isoweekday() % 7


def parse_time_local(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def scheduled_at(config: StandupConfig, local_day: date) -> datetime:
    """The UTC instant at which ``config`` runs on ``local_day``."""
    tz = ZoneInfo(config.timezone)
    local = datetime.combine(local_day, parse_time_local(config.time_local), tzinfo=tz)
    return local.astimezone(timezone.utc)


def catch_up_window(config: StandupConfig) -> timedelta:
    return timedelta(hours=config.response_window_hours)


def due_target_date(config: StandupConfig, now: datetime) -> Optional[date]:
    """Return the local target date of the latest run due at ``now``, else None.

    A run on a configured weekday is due when
    ``scheduled <= now < scheduled + response_window``. Earlier local days are
    checked too, so an evening run caught up after local midnight keeps its
    own date.
    """
    if not config.is_active:
        return None
    window = catch_up_window(config)
    today = now.astimezone(ZoneInfo(config.timezone)).date()
    for offset in range(window.days + 2):
        local_day = today - timedelta(days=offset)
        if platform_weekday(local_day) not in config.weekdays:
            continue
        delta = now - scheduled_at(config, local_day)
        if timedelta(0) <= delta < window:
            return local_day
    return None
