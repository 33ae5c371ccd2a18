from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, and_, update, extract
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.transaction import Transaction


@dataclass(frozen=True)
class CategoryAggregate:
    category_id: Optional[str]
    total_amount: Decimal
    transaction_count: int


@dataclass(frozen=True)
class MonthAggregate:
    year: int
    month: int
    total_amount: Decimal
    transaction_count: int


class TransactionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID."""
        result = await self.db.execute(
            select(Transaction).where(Transaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_id_and_user(
        self, transaction_id: str, user_id: str
    ) -> Optional[Transaction]:
        """Get transaction by ID and user ID."""
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: str) -> List[Transaction]:
        """Get every transaction of a user, newest first."""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date_time.desc(), Transaction.id)
        )
        return list(result.scalars().all())

    async def get_by_user_and_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> List[Transaction]:
        """Get a user's transactions with start <= date_time <= end, newest first."""
        result = await self.db.execute(
            select(Transaction)
            .where(
                and_(
                    Transaction.user_id == user_id,
                    Transaction.date_time >= start,
                    Transaction.date_time <= end,
                )
            )
            .order_by(Transaction.date_time.desc(), Transaction.id)
        )
        return list(result.scalars().all())

    async def count_by_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
        )
        return result.scalar() or 0

    async def aggregate_by_category(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> List[CategoryAggregate]:
        """Total and count per category_id in one grouped query.

        Rows are ordered by total descending, then category id.
        """
        total = func.sum(Transaction.amount).label("total_amount")
        result = await self.db.execute(
            select(
                Transaction.category_id,
                total,
                func.count(Transaction.id).label("transaction_count"),
            )
            .where(
                and_(
                    Transaction.user_id == user_id,
                    Transaction.date_time >= start,
                    Transaction.date_time <= end,
                )
            )
            .group_by(Transaction.category_id)
            .order_by(total.desc(), Transaction.category_id)
        )
        return [
            CategoryAggregate(
                category_id=row.category_id,
                total_amount=Decimal(row.total_amount or 0),
                transaction_count=row.transaction_count,
            )
            for row in result.all()
        ]

    async def aggregate_by_month(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> List[MonthAggregate]:
        """Total and count per calendar (year, month) in one ranged query.

        Months without transactions are not returned.
        """
        year = extract("year", Transaction.date_time).label("year")
        month = extract("month", Transaction.date_time).label("month")
        result = await self.db.execute(
            select(
                year,
                month,
                func.sum(Transaction.amount).label("total_amount"),
                func.count(Transaction.id).label("transaction_count"),
            )
            .where(
                and_(
                    Transaction.user_id == user_id,
                    Transaction.date_time >= start,
                    Transaction.date_time <= end,
                )
            )
            .group_by(year, month)
            .order_by(year, month)
        )
        return [
            MonthAggregate(
                year=int(row.year),
                month=int(row.month),
                total_amount=Decimal(row.total_amount or 0),
                transaction_count=row.transaction_count,
            )
            for row in result.all()
        ]

    async def create(
        self,
        user_id: str,
        vendor_name: str,
        amount: Decimal,
        date_time: datetime,
        payment_type: str,
        category_id: Optional[str],
        description: str = "",
        receipt_id: Optional[str] = None,
    ) -> Transaction:
        """Create a new transaction."""
        transaction = Transaction(
            user_id=user_id,
            vendor_name=vendor_name,
            description=description,
            amount=amount,
            date_time=date_time,
            payment_type=payment_type,
            category_id=category_id,
            receipt_id=receipt_id,
        )
        self.db.add(transaction)
        await self.db.flush()
        await self.db.refresh(transaction)
        return transaction

    async def update(
        self,
        transaction_id: str,
        vendor_name: Optional[str] = None,
        description: Optional[str] = None,
        amount: Optional[Decimal] = None,
        date_time: Optional[datetime] = None,
        payment_type: Optional[str] = None,
        category_id: Optional[str] = None,
        receipt_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """Update a transaction. Only the given fields change."""
        transaction = await self.get_by_id(transaction_id)
        if not transaction:
            return None

        if vendor_name is not None:
            transaction.vendor_name = vendor_name
        if description is not None:
            transaction.description = description
        if amount is not None:
            transaction.amount = amount
        if date_time is not None:
            transaction.date_time = date_time
        if payment_type is not None:
            transaction.payment_type = payment_type
        if category_id is not None:
            transaction.category_id = category_id
        if receipt_id is not None:
            transaction.receipt_id = receipt_id

        await self.db.flush()
        await self.db.refresh(transaction)
        return transaction

    async def reassign_category(
        self,
        user_id: str,
        from_category_id: str,
        to_category_id: str,
    ) -> int:
        """Move all of a user's transactions from one category to another.

        Returns the number of moved transactions.
        """
        result = await self.db.execute(
            update(Transaction)
            .where(
                and_(
                    Transaction.user_id == user_id,
                    Transaction.category_id == from_category_id,
                )
            )
            .values(category_id=to_category_id)
            .execution_options(synchronize_session="evaluate")
        )
        await self.db.flush()
        return result.rowcount or 0

    async def delete(self, transaction_id: str) -> bool:
        """Delete a transaction."""
        transaction = await self.get_by_id(transaction_id)
        if not transaction:
            return False

        await self.db.delete(transaction)
        await self.db.flush()
        return True

    async def get_by_receipt(self, receipt_id: str) -> List[Transaction]:
        """Get all transactions for a receipt."""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.receipt_id == receipt_id)
            .order_by(Transaction.created_at)
        )
        return list(result.scalars().all())
