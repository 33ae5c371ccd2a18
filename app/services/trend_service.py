import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import InvalidTrendQueryError
from app.core.periods import month_bounds, on_service_clock, previous_months
from app.db.repositories.transaction_repo import TransactionRepository
from app.models.enums import TrendDirection
from app.schemas.spending import (
    CurrentMonthSummary,
    MonthlyBreakdown,
    MonthlyTrendsResponse,
    TrendData,
)
from app.services.analytics_service import CENT, to_money

logger = logging.getLogger(__name__)


def classify_trend(percentage_change: float, threshold: Optional[float] = None) -> TrendDirection:
    """Three-way direction with a dead zone of +/- threshold percent."""
    if threshold is None:
        threshold = get_settings().TREND_STABLE_THRESHOLD_PCT
    if percentage_change > threshold:
        return TrendDirection.INCREASE
    if percentage_change < -threshold:
        return TrendDirection.DECREASE
    return TrendDirection.STABLE


def percentage_change(current: Decimal, baseline: Decimal) -> float:
    if baseline <= 0:
        return 0.0
    change = Decimal(100) * (current - baseline) / baseline
    return float(change.quantize(CENT, rounding=ROUND_HALF_UP))


class TrendService:
    """Current month spending compared against the preceding months."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.transaction_repo = TransactionRepository(db)

    async def get_monthly_trends(
        self,
        user_id: str,
        month_count: Optional[int] = None,
        include_current_month: bool = True,
        *,
        now: Optional[datetime] = None,
    ) -> MonthlyTrendsResponse:
        """Get monthly spending trends.

        The baseline is the mean of the ``month_count`` calendar months before
        the current one. Every baseline month is listed, oldest first, even
        without transactions, and the mean always divides by ``month_count``.

        Args:
            user_id: The owner's ID
            month_count: Baseline length, 1 to TREND_MAX_MONTHS (default 6)
            include_current_month: Whether current_month is returned. The
                trend is computed against the current month either way.
            now: Reference instant (service clock when omitted)

        Raises:
            InvalidTrendQueryError: month_count out of range, before any store access.
        """
        settings = get_settings()
        if month_count is None:
            month_count = settings.TREND_DEFAULT_MONTHS
        if isinstance(month_count, bool) or not isinstance(month_count, int):
            raise InvalidTrendQueryError(
                "monthCount must be an integer", {"month_count": month_count}
            )
        if not 1 <= month_count <= settings.TREND_MAX_MONTHS:
            raise InvalidTrendQueryError(
                f"monthCount must be between 1 and {settings.TREND_MAX_MONTHS}",
                {"month_count": month_count},
            )

        tz = settings.tz
        now = on_service_clock(now, tz)

        # Current month
        current = month_bounds(now.year, now.month, tz)
        current_transactions = await self.transaction_repo.get_by_user_and_range(
            user_id, current.start, current.end
        )
        current_total = sum((t.amount for t in current_transactions), Decimal("0"))

        # Baseline months, one ranged query for the whole span
        months = previous_months(now, month_count)
        monthly_rows = await self.transaction_repo.aggregate_by_month(
            user_id, months[0].start, months[-1].end
        )
        by_month = {(row.year, row.month): row for row in monthly_rows}

        breakdown = []
        for window in months:
            row = by_month.get((window.year, window.month))
            breakdown.append(
                MonthlyBreakdown(
                    month=window.label,
                    year=window.year,
                    month_number=window.month,
                    total_amount=to_money(row.total_amount) if row else Decimal("0.00"),
                    transaction_count=row.transaction_count if row else 0,
                    start_date=window.start,
                    end_date=window.end,
                )
            )

        baseline_sum = sum((m.total_amount for m in breakdown), Decimal("0"))
        baseline_average = baseline_sum / month_count
        change = percentage_change(current_total, baseline_average)
        direction = classify_trend(change, settings.TREND_STABLE_THRESHOLD_PCT)

        logger.info(
            f"Monthly trends: user_id={user_id}, month={current.label}, "
            f"current_total={current_total}, baseline_average={baseline_average:.2f}, "
            f"change={change}, direction={direction.value}"
        )

        current_summary = None
        if include_current_month:
            current_summary = CurrentMonthSummary(
                month=current.label,
                total_amount=to_money(current_total),
                transaction_count=len(current_transactions),
                start_date=current.start,
                end_date=current.end,
            )

        return MonthlyTrendsResponse(
            user_id=user_id,
            current_month=current_summary,
            trend=TrendData(
                percentage_change=change,
                direction=direction,
                comparison_period=f"last {month_count} months",
                previous_months_average=to_money(baseline_average),
            ),
            monthly_breakdown=breakdown,
        )
