import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.category_refs import LegacySentinel, parse_category_ref
from app.core.exceptions import InvalidRequestError, ResourceNotFoundError
from app.db.repositories.category_repo import CategoryRepository
from app.models.category import Category
from app.models.enums import CategoryType

logger = logging.getLogger(__name__)


class CategoryService:
    """Category lookups and creation shared by the write path and reconciliation."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.category_repo = CategoryRepository(db)

    async def find_or_create(
        self,
        user_id: str,
        name: str,
        type: CategoryType = CategoryType.EXPENSE,
        color: Optional[str] = None,
    ) -> tuple[Category, bool]:
        """Return the user's category with this name (case-insensitive), creating it if missing.

        Returns (category, created). When the unique (user_id, lower(name))
        index exists, a concurrent create for the same name raises
        IntegrityError; the insert runs in a savepoint so the winner can be
        read back without aborting the caller's transaction.
        """
        if not name or not name.strip():
            raise InvalidRequestError("Category name is required")

        existing = await self.category_repo.get_by_name(user_id, name)
        if existing:
            return existing, False

        try:
            async with self.db.begin_nested():
                category = await self.category_repo.create(
                    user_id=user_id, name=name, type=type, color=color
                )
        except IntegrityError:
            category = await self.category_repo.get_by_name(user_id, name)
            if category is None:
                raise
            logger.info(
                f"Category {name!r} created concurrently for user_id={user_id}, using {category.id}"
            )
            return category, False

        logger.info(f"Created category {name!r} ({category.id}) for user_id={user_id}")
        return category, True

    async def resolve_reference(self, user_id: str, raw: Optional[str]) -> Optional[str]:
        """Normalize a client-supplied category reference to a real category id.

        The legacy "misc" sentinel maps to the user's "Misc" category, which
        is created on first use. Real ids must belong to the user.

        Raises:
            ResourceNotFoundError: the id does not name one of the user's categories.
        """
        ref = parse_category_ref(raw)
        if ref is None:
            return None

        if isinstance(ref, LegacySentinel):
            misc, _ = await self.find_or_create(
                user_id, get_settings().MISC_CATEGORY_NAME, CategoryType.EXPENSE
            )
            return misc.id

        category = await self.category_repo.get_by_id_and_user(ref.id, user_id)
        if category is None:
            raise ResourceNotFoundError(
                "Category not found", {"category_id": ref.id, "user_id": user_id}
            )
        return category.id
