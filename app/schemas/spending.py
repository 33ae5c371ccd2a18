from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from app.models.enums import TrendDirection


class FrozenModel(BaseModel):
    """Computed responses are immutable once built."""

    model_config = ConfigDict(frozen=True)


# ============== Spending Summary Schemas ==============

class CategorySpendingSummary(FrozenModel):
    category_id: str
    category_name: str
    category_type: str
    total_amount: Decimal
    transaction_count: int
    percentage: float  # Share of total_spending, 2 decimals


class SpendingSummaryResponse(FrozenModel):
    user_id: str
    period: str  # Display label, e.g. "Past Week"
    start_date: datetime
    end_date: datetime
    total_spending: Decimal
    categories: List[CategorySpendingSummary]
    # Spending whose category no longer exists (included in total_spending)
    unresolved_amount: Decimal = Decimal("0")
    unresolved_count: int = 0


class TransactionDetail(FrozenModel):
    id: str
    vendor_name: str
    description: str
    date_time: datetime
    amount: Decimal
    payment_type: str
    receipt_id: Optional[str] = None


class CategoryTransactions(FrozenModel):
    category_id: str
    category_name: str
    category_type: str
    total_amount: Decimal
    transaction_count: int
    transactions: List[TransactionDetail]


class DetailedSpendingReport(FrozenModel):
    user_id: str
    period: str
    start_date: datetime
    end_date: datetime
    total_spending: Decimal
    categories: List[CategoryTransactions]


# ============== Monthly Trend Schemas ==============

class MonthlyBreakdown(FrozenModel):
    month: str  # e.g. "January 2025"
    year: int
    month_number: int  # 1-12
    total_amount: Decimal
    transaction_count: int
    start_date: datetime
    end_date: datetime


class CurrentMonthSummary(FrozenModel):
    month: str
    total_amount: Decimal
    transaction_count: int
    start_date: datetime
    end_date: datetime


class TrendData(FrozenModel):
    percentage_change: float
    direction: TrendDirection
    comparison_period: str  # e.g. "last 6 months"
    previous_months_average: Decimal


class MonthlyTrendsResponse(FrozenModel):
    user_id: str
    current_month: Optional[CurrentMonthSummary] = None
    trend: TrendData
    monthly_breakdown: List[MonthlyBreakdown]
