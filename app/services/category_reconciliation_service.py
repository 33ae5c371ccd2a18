import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.category_refs import LegacySentinel, parse_category_ref
from app.core.exceptions import InvalidRequestError
from app.db.repositories.category_repo import CategoryRepository, normalize_category_name
from app.db.repositories.transaction_repo import TransactionRepository
from app.models.category import Category
from app.models.enums import CategoryType
from app.schemas.reconciliation import (
    ORPHANED_REMOVED_ID,
    MergeAction,
    ReconciliationReport,
)

logger = logging.getLogger(__name__)


class CategoryReconciliationService:
    """Repairs an owner's category data.

    One pass runs these steps in order:

    1. Ensure an "Uncategorized" category exists.
    2. Point transactions that still carry the legacy "misc" sentinel at the
       owner's "Misc" category.
    3. Point transactions whose category id does not exist at "Uncategorized".
    4. Merge categories whose names differ only by case or surrounding
       whitespace into the oldest one, then delete the others.

    Transactions are only ever re-pointed, never deleted. A pass over
    consistent data changes nothing, so it is safe to re-run until the
    report comes back empty. Concurrent passes for the same owner are not
    coordinated here; callers serialize them per owner.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.transaction_repo = TransactionRepository(db)
        self.category_repo = CategoryRepository(db)

    @staticmethod
    def _first_named(categories: Sequence[Category], name: str) -> Optional[Category]:
        key = normalize_category_name(name)
        return next(
            (c for c in categories if normalize_category_name(c.name) == key), None
        )

    @staticmethod
    def _duplicate_groups(categories: Sequence[Category]) -> Dict[str, List[Category]]:
        """Categories grouped by normalized name, insertion order kept. Singletons dropped."""
        groups: Dict[str, List[Category]] = defaultdict(list)
        for category in categories:
            key = normalize_category_name(category.name)
            if not key:
                continue
            groups[key].append(category)
        return {key: members for key, members in groups.items() if len(members) > 1}

    async def _ensure_uncategorized(
        self, user_id: str, categories: Sequence[Category]
    ) -> tuple[Category, bool]:
        settings = get_settings()
        existing = self._first_named(categories, settings.UNCATEGORIZED_CATEGORY_NAME)
        if existing:
            return existing, False

        created = await self.category_repo.create(
            user_id=user_id,
            name=settings.UNCATEGORIZED_CATEGORY_NAME,
            type=CategoryType.EXPENSE,
            color=settings.UNCATEGORIZED_CATEGORY_COLOR,
        )
        logger.info(
            f"[RECONCILE] Created {created.name!r} category {created.id} for user_id={user_id}"
        )
        return created, True

    async def _fix_references(
        self,
        user_id: str,
        valid_ids: Set[str],
        uncategorized: Category,
        misc: Optional[Category],
    ) -> tuple[int, int]:
        """Steps 2 and 3. Returns (legacy_fixed, orphaned_fixed)."""
        fallback = get_settings().LEGACY_SENTINEL_FALLBACK_TO_UNCATEGORIZED
        legacy_fixed = 0
        orphaned_fixed = 0

        transactions = await self.transaction_repo.get_by_user(user_id)
        logger.info(
            f"[RECONCILE] Checking {len(transactions)} transactions for user_id={user_id}"
        )

        for tx in transactions:
            raw = tx.category_id
            ref = parse_category_ref(raw)
            if ref is None or raw in valid_ids:
                continue

            if isinstance(ref, LegacySentinel):
                if misc is not None:
                    await self.transaction_repo.update(tx.id, category_id=misc.id)
                    legacy_fixed += 1
                    logger.info(
                        f"[RECONCILE] Legacy sentinel transaction {tx.id} "
                        f"(vendor={tx.vendor_name!r}) -> Misc {misc.id}"
                    )
                    continue
                if not fallback:
                    logger.warning(
                        f"[RECONCILE] Legacy sentinel transaction {tx.id} left as is: "
                        f"no Misc category for user_id={user_id}"
                    )
                    continue

            await self.transaction_repo.update(tx.id, category_id=uncategorized.id)
            orphaned_fixed += 1
            logger.info(
                f"[RECONCILE] Orphaned transaction {tx.id} (vendor={tx.vendor_name!r}, "
                f"category_id={raw!r}) -> Uncategorized {uncategorized.id}"
            )

        return legacy_fixed, orphaned_fixed

    async def _merge_group(
        self, user_id: str, key: str, members: List[Category]
    ) -> tuple[List[MergeAction], bool]:
        """Merge one duplicate group into its first member.

        Each duplicate is moved and deleted inside its own savepoint. A store
        error rolls that duplicate back and ends the group; merges already
        done for the group stay. Returns (actions, failed).
        """
        # Plain values: a rolled back savepoint expires the ORM objects it touched
        canonical_id, canonical_name = members[0].id, members[0].name
        duplicates = [(c.id, c.name) for c in members[1:]]
        actions: List[MergeAction] = []

        for duplicate_id, duplicate_name in duplicates:
            try:
                async with self.db.begin_nested():
                    moved = await self.transaction_repo.reassign_category(
                        user_id, duplicate_id, canonical_id
                    )
                    await self.category_repo.delete(duplicate_id)
            except SQLAlchemyError as e:
                logger.error(
                    f"[RECONCILE] Merging {duplicate_id} into {canonical_id} "
                    f"(group {key!r}) failed for user_id={user_id}: {e}"
                )
                return actions, True

            logger.info(
                f"[RECONCILE] Merged category {duplicate_id} ({duplicate_name!r}) into "
                f"{canonical_id} ({canonical_name!r}), moved {moved} transactions"
            )
            actions.append(
                MergeAction(
                    keep_id=canonical_id,
                    removed_id=duplicate_id,
                    moved_transactions=moved,
                )
            )

        return actions, False

    async def reconcile(self, user_id: str) -> ReconciliationReport:
        """Run one full reconciliation pass for a user.

        Store errors in steps 1 to 3 propagate. Merge failures in step 4 are
        logged and reported in ``failed_groups``; the pass goes on with the
        next group.
        """
        if not user_id:
            raise InvalidRequestError("Invalid userId")

        settings = get_settings()
        categories = await self.category_repo.get_by_user(user_id)

        uncategorized, created = await self._ensure_uncategorized(user_id, categories)
        valid_ids = {c.id for c in categories}
        valid_ids.add(uncategorized.id)

        misc = self._first_named(categories, settings.MISC_CATEGORY_NAME)
        legacy_fixed, orphaned_fixed = await self._fix_references(
            user_id, valid_ids, uncategorized, misc
        )

        actions: List[MergeAction] = []
        if orphaned_fixed:
            actions.append(
                MergeAction(
                    keep_id=uncategorized.id,
                    removed_id=ORPHANED_REMOVED_ID,
                    moved_transactions=orphaned_fixed,
                )
            )

        merges: List[MergeAction] = []
        failed_groups: List[str] = []
        for key, members in self._duplicate_groups(categories).items():
            group_actions, failed = await self._merge_group(user_id, key, members)
            merges.extend(group_actions)
            if failed:
                failed_groups.append(key)

        logger.info(
            f"[RECONCILE] user_id={user_id}: legacy_fixed={legacy_fixed}, "
            f"orphaned_fixed={orphaned_fixed}, merges={len(merges)}, "
            f"failed_groups={failed_groups}"
        )

        return ReconciliationReport(
            user_id=user_id,
            uncategorized_category_id=uncategorized.id,
            uncategorized_created=created,
            legacy_fixed=legacy_fixed,
            orphaned_fixed=orphaned_fixed,
            actions=actions + merges,
            failed_groups=failed_groups,
        )

    async def reconcile_categories(self, user_id: str) -> List[MergeAction]:
        """Run a pass and return only its actions."""
        report = await self.reconcile(user_id)
        return report.actions
