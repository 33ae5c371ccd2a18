"""Period specifiers to concrete time windows.

All windows are inclusive on both ends and expressed in the service
timezone (``Settings.TIMEZONE``).
"""
import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Union

from app.config import get_settings
from app.core.exceptions import InvalidPeriodError
from app.models.enums import SpendingPeriod

# Last representable instant of a day at millisecond precision
END_OF_DAY = time(23, 59, 59, 999000)

PERIOD_LABELS = {
    SpendingPeriod.CURRENT_MONTH: "Current Month",
    SpendingPeriod.PAST_WEEK: "Past Week",
    SpendingPeriod.PAST_30_DAYS: "Past 30 Days",
    SpendingPeriod.CUSTOM: "Custom Range",
}

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class ResolvedPeriod:
    period: SpendingPeriod
    label: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class MonthWindow:
    year: int
    month: int
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return format_month_label(self.year, self.month)


def service_now(tz: Optional[tzinfo] = None) -> datetime:
    """Current instant on the service clock."""
    return datetime.now(tz or get_settings().tz)


def on_service_clock(value: Optional[datetime], tz: Optional[tzinfo] = None) -> datetime:
    """``value`` converted to the service timezone; naive values are taken as local."""
    tz = tz or get_settings().tz
    if value is None:
        return service_now(tz)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), END_OF_DAY, tzinfo=value.tzinfo)


def _as_datetime(value: DateLike, tz: tzinfo, field: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidPeriodError(
                f"{field} is not a valid ISO-8601 date", {"field": field, "value": value}
            ) from e
    if isinstance(value, datetime):
        return on_service_clock(value, tz)
    return datetime.combine(value, time.min, tzinfo=tz)


def _parse_period(period: Union[SpendingPeriod, str]) -> SpendingPeriod:
    try:
        return SpendingPeriod(period)
    except ValueError as e:
        raise InvalidPeriodError(
            f"Invalid period type: {period}",
            {"allowed": [p.value for p in SpendingPeriod]},
        ) from e


def resolve_period(
    period: Union[SpendingPeriod, str],
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
    *,
    now: Optional[datetime] = None,
) -> ResolvedPeriod:
    """Resolve a period specifier against ``now``.

    Raises InvalidPeriodError for unknown periods, a custom period without
    both bounds, or a start bound after the end bound.
    """
    tz = get_settings().tz
    kind = _parse_period(period)
    now = on_service_clock(now, tz)

    start_dt = _as_datetime(start, tz, "start_date") if start is not None else None
    end_dt = _as_datetime(end, tz, "end_date") if end is not None else None
    if start_dt is not None and end_dt is not None and start_dt > end_dt:
        raise InvalidPeriodError(
            "startDate must be before or equal to endDate",
            {"start_date": start_dt.isoformat(), "end_date": end_dt.isoformat()},
        )

    label = PERIOD_LABELS[kind]

    if kind is SpendingPeriod.CURRENT_MONTH:
        return ResolvedPeriod(kind, label, start_of_day(now.replace(day=1)), now)

    if kind is SpendingPeriod.PAST_WEEK:
        return ResolvedPeriod(kind, label, start_of_day(now - timedelta(days=7)), now)

    if kind is SpendingPeriod.PAST_30_DAYS:
        return ResolvedPeriod(kind, label, start_of_day(now - timedelta(days=30)), now)

    if start_dt is None or end_dt is None:
        raise InvalidPeriodError(
            "startDate and endDate are required for custom period"
        )
    return ResolvedPeriod(kind, label, start_of_day(start_dt), end_of_day(end_dt))


def format_month_label(year: int, month: int) -> str:
    """e.g. ``January 2025``."""
    return f"{calendar.month_name[month]} {year}"


def month_bounds(year: int, month: int, tz: tzinfo) -> MonthWindow:
    """First and last instant (23:59:59.999) of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return MonthWindow(
        year=year,
        month=month,
        start=datetime(year, month, 1, tzinfo=tz),
        end=datetime.combine(date(year, month, last_day), END_OF_DAY, tzinfo=tz),
    )


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def previous_months(now: datetime, count: int) -> List[MonthWindow]:
    """The ``count`` calendar months before ``now``'s month, oldest first."""
    tz = now.tzinfo or get_settings().tz
    months = []
    for i in range(count, 0, -1):
        year, month = shift_month(now.year, now.month, -i)
        months.append(month_bounds(year, month, tz))
    return months
