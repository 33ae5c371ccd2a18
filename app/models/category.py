import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import CategoryType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # Owner (Firebase UID); categories are never shared between owners
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Display name. Unique per owner by convention only, see migration 002
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CategoryType.EXPENSE.value
    )
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)

    # Insertion order; the first category of a duplicate group survives a merge
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_categories_user_name", "user_id", "name"),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} user_id={self.user_id} name={self.name!r}>"
