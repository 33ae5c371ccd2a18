from enum import Enum


class CategoryType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class SpendingPeriod(str, Enum):
    CURRENT_MONTH = "current_month"
    PAST_WEEK = "past_week"
    PAST_30_DAYS = "past_30_days"
    CUSTOM = "custom"


class TrendDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    STABLE = "stable"


class DanglingCategoryPolicy(str, Enum):
    """What the summary does with spending whose category no longer exists."""

    SKIP = "skip"
    BUCKET = "bucket"
