# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Time helpers shared by repositories and jobs."""
from datetime import date, datetime, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Normalise a driver value (datetime on Postgres, ISO text on SQLite) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


def to_db(value: datetime) -> str:
    """Render an aware datetime as UTC ISO text, comparable lexically across rows."""
    return value.astimezone(timezone.utc).isoformat()
