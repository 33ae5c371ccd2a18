from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.category import Category
from app.models.enums import CategoryType


def normalize_category_name(name: Optional[str]) -> str:
    """Key used to detect duplicate names: trimmed and lower-cased."""
    return (name or "").strip().lower()


class CategoryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, category_id: str) -> Optional[Category]:
        """Get category by ID."""
        result = await self.db.execute(
            select(Category).where(Category.id == category_id)
        )
        return result.scalar_one_or_none()

    async def get_by_id_and_user(
        self, category_id: str, user_id: str
    ) -> Optional[Category]:
        """Get category by ID and user ID."""
        result = await self.db.execute(
            select(Category).where(
                Category.id == category_id,
                Category.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: str) -> List[Category]:
        """Get all categories of a user in insertion order."""
        result = await self.db.execute(
            select(Category)
            .where(Category.user_id == user_id)
            .order_by(Category.created_at, Category.id)
        )
        return list(result.scalars().all())

    async def get_by_name(self, user_id: str, name: str) -> Optional[Category]:
        """Case-insensitive lookup; the oldest match wins."""
        result = await self.db.execute(
            select(Category)
            .where(
                Category.user_id == user_id,
                func.lower(func.trim(Category.name)) == normalize_category_name(name),
            )
            .order_by(Category.created_at, Category.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        user_id: str,
        name: str,
        type: CategoryType = CategoryType.EXPENSE,
        color: Optional[str] = None,
    ) -> Category:
        """Create a new category."""
        category = Category(
            user_id=user_id,
            name=name.strip(),
            type=CategoryType(type).value,
            color=color,
        )
        self.db.add(category)
        await self.db.flush()
        await self.db.refresh(category)
        return category

    async def delete(self, category_id: str) -> bool:
        """Delete a category. Transactions are not touched."""
        category = await self.get_by_id(category_id)
        if not category:
            return False

        await self.db.delete(category)
        await self.db.flush()
        return True
