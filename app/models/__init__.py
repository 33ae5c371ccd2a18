from app.models.category import Category
from app.models.transaction import Transaction
from app.models.enums import (
    CategoryType,
    SpendingPeriod,
    TrendDirection,
    DanglingCategoryPolicy,
)

__all__ = [
    "Category",
    "Transaction",
    "CategoryType",
    "SpendingPeriod",
    "TrendDirection",
    "DanglingCategoryPolicy",
]
