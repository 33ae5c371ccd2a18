import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.periods import resolve_period
from app.db.repositories.category_repo import CategoryRepository
from app.db.repositories.transaction_repo import TransactionRepository
from app.models.category import Category
from app.models.enums import CategoryType, DanglingCategoryPolicy, SpendingPeriod
from app.schemas.spending import (
    CategorySpendingSummary,
    CategoryTransactions,
    DetailedSpendingReport,
    SpendingSummaryResponse,
    TransactionDetail,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Synthetic entry used by the "bucket" dangling policy
UNKNOWN_CATEGORY_ID = "unknown"
UNKNOWN_CATEGORY_NAME = "Unknown"


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(part: Decimal, total: Decimal) -> float:
    """Share of ``total`` in percent, 2 decimals. 0 when total is 0."""
    if total <= 0:
        return 0.0
    return float((Decimal(100) * part / total).quantize(CENT, rounding=ROUND_HALF_UP))


class AnalyticsService:
    """Time-windowed spending summaries grouped by category."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.transaction_repo = TransactionRepository(db)
        self.category_repo = CategoryRepository(db)

    async def _categories_by_id(self, user_id: str) -> Dict[str, Category]:
        categories = await self.category_repo.get_by_user(user_id)
        return {c.id: c for c in categories}

    async def get_summary(
        self,
        user_id: str,
        period: Union[SpendingPeriod, str],
        start_date: Optional[Union[date, datetime, str]] = None,
        end_date: Optional[Union[date, datetime, str]] = None,
        *,
        now: Optional[datetime] = None,
        dangling_policy: Optional[Union[DanglingCategoryPolicy, str]] = None,
    ) -> SpendingSummaryResponse:
        """Get spending per category for a period.

        Totals come from a single grouped query. Groups whose category no
        longer exists are skipped by default; their spending still counts
        toward ``total_spending`` and is reported as ``unresolved_amount``.
        With the "bucket" policy they are listed as one "Unknown" entry.

        Raises:
            InvalidPeriodError: before any store access, for a bad period.
        """
        window = resolve_period(period, start_date, end_date, now=now)
        policy = DanglingCategoryPolicy(
            dangling_policy or get_settings().DANGLING_CATEGORY_POLICY
        )

        groups = await self.transaction_repo.aggregate_by_category(
            user_id, window.start, window.end
        )
        total_spending = sum((g.total_amount for g in groups), Decimal("0"))
        categories = await self._categories_by_id(user_id)

        summaries: List[CategorySpendingSummary] = []
        unresolved_amount = Decimal("0")
        unresolved_count = 0

        for group in groups:
            category = categories.get(group.category_id) if group.category_id else None
            if category is None:
                logger.warning(
                    f"Spending summary: category {group.category_id!r} not found for "
                    f"user_id={user_id}, amount={group.total_amount} "
                    f"count={group.transaction_count} (policy={policy.value})"
                )
                unresolved_amount += group.total_amount
                unresolved_count += group.transaction_count
                continue

            summaries.append(
                CategorySpendingSummary(
                    category_id=category.id,
                    category_name=category.name,
                    category_type=category.type,
                    total_amount=to_money(group.total_amount),
                    transaction_count=group.transaction_count,
                    percentage=percentage_of(group.total_amount, total_spending),
                )
            )

        if policy is DanglingCategoryPolicy.BUCKET and unresolved_count:
            summaries.append(
                CategorySpendingSummary(
                    category_id=UNKNOWN_CATEGORY_ID,
                    category_name=UNKNOWN_CATEGORY_NAME,
                    category_type=CategoryType.EXPENSE.value,
                    total_amount=to_money(unresolved_amount),
                    transaction_count=unresolved_count,
                    percentage=percentage_of(unresolved_amount, total_spending),
                )
            )

        return SpendingSummaryResponse(
            user_id=user_id,
            period=window.label,
            start_date=window.start,
            end_date=window.end,
            total_spending=to_money(total_spending),
            categories=summaries,
            unresolved_amount=to_money(unresolved_amount),
            unresolved_count=unresolved_count,
        )

    async def get_detailed_report(
        self,
        user_id: str,
        period: Union[SpendingPeriod, str],
        start_date: Optional[Union[date, datetime, str]] = None,
        end_date: Optional[Union[date, datetime, str]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> DetailedSpendingReport:
        """Get every transaction of a period grouped by category.

        Used for exports. Transactions whose category does not exist are left
        out of both the listing and the total.
        """
        window = resolve_period(period, start_date, end_date, now=now)

        transactions = await self.transaction_repo.get_by_user_and_range(
            user_id, window.start, window.end
        )
        categories = await self._categories_by_id(user_id)

        grouped = defaultdict(list)
        for t in transactions:
            grouped[t.category_id].append(t)

        report_categories: List[CategoryTransactions] = []
        total_spending = Decimal("0")
        skipped = 0

        for category_id, category_transactions in grouped.items():
            category = categories.get(category_id) if category_id else None
            if category is None:
                skipped += len(category_transactions)
                continue

            category_total = sum((t.amount for t in category_transactions), Decimal("0"))
            total_spending += category_total

            report_categories.append(
                CategoryTransactions(
                    category_id=category.id,
                    category_name=category.name,
                    category_type=category.type,
                    total_amount=to_money(category_total),
                    transaction_count=len(category_transactions),
                    transactions=[
                        TransactionDetail(
                            id=t.id,
                            vendor_name=t.vendor_name,
                            description=t.description,
                            date_time=t.date_time,
                            amount=to_money(t.amount),
                            payment_type=t.payment_type,
                            receipt_id=t.receipt_id,
                        )
                        for t in category_transactions
                    ],
                )
            )

        if skipped:
            logger.warning(
                f"Detailed report: {skipped} transaction(s) with unknown category "
                f"left out for user_id={user_id}"
            )

        report_categories.sort(key=lambda c: c.total_amount, reverse=True)

        return DetailedSpendingReport(
            user_id=user_id,
            period=window.label,
            start_date=window.start,
            end_date=window.end,
            total_spending=to_money(total_spending),
            categories=report_categories,
        )
