import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidRequestError, ResourceNotFoundError
from app.core.periods import on_service_clock
from app.db.repositories.transaction_repo import TransactionRepository
from app.models.transaction import Transaction
from app.services.category_service import CategoryService

logger = logging.getLogger(__name__)


def _validate_amount(amount: Decimal) -> Decimal:
    amount = Decimal(amount)
    if amount <= 0:
        raise InvalidRequestError("Amount must be positive", {"amount": str(amount)})
    return amount


class TransactionService:
    """Transaction writes. Category references are normalized before they are stored,
    so new rows never carry the legacy "misc" sentinel."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.transaction_repo = TransactionRepository(db)
        self.category_service = CategoryService(db)

    async def create_transaction(
        self,
        user_id: str,
        vendor_name: str,
        amount: Decimal,
        date_time: datetime,
        payment_type: str,
        category: Optional[str] = None,
        description: str = "",
        receipt_id: Optional[str] = None,
    ) -> Transaction:
        if not vendor_name or not vendor_name.strip():
            raise InvalidRequestError("Vendor name is required")
        amount = _validate_amount(amount)
        category_id = await self.category_service.resolve_reference(user_id, category)

        transaction = await self.transaction_repo.create(
            user_id=user_id,
            vendor_name=vendor_name.strip(),
            description=description,
            amount=amount,
            date_time=on_service_clock(date_time),
            payment_type=payment_type,
            category_id=category_id,
            receipt_id=receipt_id,
        )
        logger.debug(f"Created transaction {transaction.id} for user_id={user_id}")
        return transaction

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        vendor_name: Optional[str] = None,
        description: Optional[str] = None,
        amount: Optional[Decimal] = None,
        date_time: Optional[datetime] = None,
        payment_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Transaction:
        """Partial update of one of the user's transactions.

        Raises:
            ResourceNotFoundError: no such transaction for this user.
        """
        existing = await self.transaction_repo.get_by_id_and_user(transaction_id, user_id)
        if existing is None:
            raise ResourceNotFoundError(
                "Transaction not found", {"transaction_id": transaction_id}
            )

        category_id = None
        if category is not None:
            category_id = await self.category_service.resolve_reference(user_id, category)

        return await self.transaction_repo.update(
            transaction_id,
            vendor_name=vendor_name,
            description=description,
            amount=_validate_amount(amount) if amount is not None else None,
            date_time=on_service_clock(date_time) if date_time is not None else None,
            payment_type=payment_type,
            category_id=category_id,
        )
