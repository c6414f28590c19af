from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo


class Granularity(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class InvalidGranularity(ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid summary granularity: {value}")
        self.value = value


@dataclass(frozen=True)
class Period:
    granularity: Granularity
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


_TARGET_FORMATS = {
    Granularity.weekly: ("%Y-%m-%d", "YYYY-MM-DD"),
    Granularity.monthly: ("%Y-%m", "YYYY-MM"),
    Granularity.yearly: ("%Y", "YYYY"),
}


def as_granularity(value: Union[Granularity, str]) -> Granularity:
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity(value)
    except ValueError as exc:
        raise InvalidGranularity(value) from exc


def _month_end(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1) - date.resolution
    return date(day.year, day.month + 1, 1) - date.resolution


def calculate_period(
    target: Union[date, datetime], granularity: Union[Granularity, str]
) -> Period:
    gran = as_granularity(granularity)
    day = target.date() if isinstance(target, datetime) else target

    if gran is Granularity.weekly:
        # weekday(): Monday is 0, so Sunday steps back six days.
        start = day - timedelta(days=day.weekday())
        return Period(gran, start, start + timedelta(days=6))
    if gran is Granularity.monthly:
        start = day.replace(day=1)
        return Period(gran, start, _month_end(start))
    return Period(gran, date(day.year, 1, 1), date(day.year, 12, 31))


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def parse_target_date(
    raw: Optional[str],
    granularity: Union[Granularity, str],
    *,
    today: Optional[date] = None,
) -> date:
    """Parse the ``date`` query value of a summary request.

    Weekly requests take ``YYYY-MM-DD``, monthly ``YYYY-MM`` and yearly
    ``YYYY``. A full ISO date is accepted for every granularity, and an empty
    value resolves to ``today``.
    """
    gran = as_granularity(granularity)
    value = (raw or "").strip()
    if not value:
        return today or date.today()
    fmt, label = _TARGET_FORMATS[gran]
    try:
        return datetime.strptime(value, fmt).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(
            f"Invalid date format for {gran.value} summary. Use {label}."
        ) from exc
