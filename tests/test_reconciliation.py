"""Tests for CategoryReconciliationService."""
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.config import get_settings
from app.core.exceptions import InvalidRequestError
from app.db.repositories.transaction_repo import TransactionRepository
from app.schemas.reconciliation import ORPHANED_REMOVED_ID
from app.services.category_reconciliation_service import CategoryReconciliationService

from tests.conftest import OTHER_USER_ID, USER_ID, category_names, transaction_counts

WHEN = datetime(2026, 10, 1, 12, tzinfo=timezone.utc)


class TestDuplicateMerge:
    @pytest.mark.asyncio
    async def test_case_variants_merge_into_oldest(self, test_session, make_category, make_transaction):
        food = await make_category("Food")
        food_lower = await make_category("food")
        food_upper = await make_category("FOOD")
        for category in (food, food_lower, food_upper):
            await make_transaction("10.00", WHEN, category.id)
            await make_transaction("5.00", WHEN, category.id)

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        merges = [a for a in report.actions if a.removed_id != ORPHANED_REMOVED_ID]
        assert [(a.keep_id, a.removed_id, a.moved_transactions) for a in merges] == [
            (food.id, food_lower.id, 2),
            (food.id, food_upper.id, 2),
        ]
        names = await category_names(test_session)
        assert sorted(names.values()) == ["Food", "Uncategorized"]
        assert await transaction_counts(test_session) == {food.id: 6}

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_counts_as_duplicate(self, test_session, make_category, make_transaction):
        groceries = await make_category("Groceries")
        padded = await make_category("  groceries ")
        await make_transaction("3.00", WHEN, padded.id)

        actions = await CategoryReconciliationService(test_session).reconcile_categories(USER_ID)

        assert [(a.keep_id, a.removed_id) for a in actions] == [(groceries.id, padded.id)]
        assert await transaction_counts(test_session) == {groceries.id: 1}

    @pytest.mark.asyncio
    async def test_duplicate_without_transactions_is_still_removed(self, test_session, make_category):
        travel = await make_category("Travel")
        empty = await make_category("travel")

        actions = await CategoryReconciliationService(test_session).reconcile_categories(USER_ID)

        assert [(a.keep_id, a.removed_id, a.moved_transactions) for a in actions] == [
            (travel.id, empty.id, 0)
        ]
        assert empty.id not in await category_names(test_session)

    @pytest.mark.asyncio
    async def test_other_owners_are_untouched(self, test_session, make_category, make_transaction):
        await make_category("Food")
        theirs_a = await make_category("Food", user_id=OTHER_USER_ID)
        theirs_b = await make_category("food", user_id=OTHER_USER_ID)
        await make_transaction("1.00", WHEN, theirs_b.id, user_id=OTHER_USER_ID)
        await make_transaction("1.00", WHEN, "deleted-123", user_id=OTHER_USER_ID)

        await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert set(await category_names(test_session, OTHER_USER_ID)) == {theirs_a.id, theirs_b.id}
        assert await transaction_counts(test_session, OTHER_USER_ID) == {
            theirs_b.id: 1,
            "deleted-123": 1,
        }


class TestReferenceRepair:
    @pytest.mark.asyncio
    async def test_legacy_sentinel_moves_to_misc(self, test_session, make_category, make_transaction):
        await make_category("Misc", id="C1")
        await make_transaction("8.00", WHEN, "misc")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.legacy_fixed == 1
        assert report.orphaned_fixed == 0
        assert all(a.removed_id != ORPHANED_REMOVED_ID for a in report.actions)
        assert await transaction_counts(test_session) == {"C1": 1}

    @pytest.mark.asyncio
    async def test_sentinel_match_ignores_case(self, test_session, make_category, make_transaction):
        await make_category("misc", id="C1")
        await make_transaction("8.00", WHEN, "MISC")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.legacy_fixed == 1
        assert await transaction_counts(test_session) == {"C1": 1}

    @pytest.mark.asyncio
    async def test_orphaned_reference_moves_to_uncategorized(self, test_session, make_category, make_transaction):
        await make_category("Food")
        await make_transaction("4.00", WHEN, "deleted-123")
        await make_transaction("6.00", WHEN, "deleted-456")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.uncategorized_created is True
        assert report.orphaned_fixed == 2
        orphan_action = report.actions[0]
        assert orphan_action.removed_id == ORPHANED_REMOVED_ID
        assert orphan_action.keep_id == report.uncategorized_category_id
        assert orphan_action.moved_transactions == 2

        names = await category_names(test_session)
        assert names[report.uncategorized_category_id] == "Uncategorized"
        assert await transaction_counts(test_session) == {report.uncategorized_category_id: 2}

    @pytest.mark.asyncio
    async def test_existing_uncategorized_is_reused(self, test_session, make_category, make_transaction):
        existing = await make_category("uncategorized")
        await make_transaction("4.00", WHEN, "deleted-123")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.uncategorized_created is False
        assert report.uncategorized_category_id == existing.id
        assert await transaction_counts(test_session) == {existing.id: 1}

    @pytest.mark.asyncio
    async def test_sentinel_without_misc_falls_back_to_uncategorized(self, test_session, make_transaction):
        await make_transaction("2.00", WHEN, "misc")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.legacy_fixed == 0
        assert report.orphaned_fixed == 1
        assert await transaction_counts(test_session) == {report.uncategorized_category_id: 1}

    @pytest.mark.asyncio
    async def test_sentinel_without_misc_is_kept_when_fallback_disabled(
        self, test_session, make_transaction, monkeypatch
    ):
        monkeypatch.setattr(get_settings(), "LEGACY_SENTINEL_FALLBACK_TO_UNCATEGORIZED", False)
        await make_transaction("2.00", WHEN, "misc")

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.orphaned_fixed == 0
        assert await transaction_counts(test_session) == {"misc": 1}

    @pytest.mark.asyncio
    async def test_missing_reference_is_left_alone(self, test_session, make_category, make_transaction):
        await make_transaction("2.00", WHEN, None)

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.orphaned_fixed == 0
        assert await transaction_counts(test_session) == {None: 1}


class TestPassProperties:
    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, test_session, make_category, make_transaction):
        await make_category("Misc")
        food = await make_category("Food")
        dup = await make_category("FOOD")
        await make_transaction("1.00", WHEN, "misc")
        await make_transaction("2.00", WHEN, "deleted-123")
        await make_transaction("3.00", WHEN, dup.id)
        await make_transaction("4.00", WHEN, food.id)

        service = CategoryReconciliationService(test_session)
        first = await service.reconcile(USER_ID)
        counts_after_first = await transaction_counts(test_session)
        second = await service.reconcile(USER_ID)

        assert not first.is_clean
        assert second.actions == []
        assert second.is_clean
        assert await transaction_counts(test_session) == counts_after_first

    @pytest.mark.asyncio
    async def test_every_transaction_survives_and_resolves(self, test_session, make_category, make_transaction):
        await make_category("Misc")
        shop = await make_category("Shopping")
        shop_dup = await make_category("shopping")
        await make_category("Rent")
        refs = ["misc", "misc", "deleted-1", shop.id, shop_dup.id, shop_dup.id, None]
        for ref in refs:
            await make_transaction("9.99", WHEN, ref)

        await CategoryReconciliationService(test_session).reconcile(USER_ID)

        counts = await transaction_counts(test_session)
        assert sum(counts.values()) == len(refs)
        valid_ids = set(await category_names(test_session))
        assert all(ref is None or ref in valid_ids for ref in counts)

    @pytest.mark.asyncio
    async def test_empty_user_id_is_rejected(self, test_session):
        with pytest.raises(InvalidRequestError):
            await CategoryReconciliationService(test_session).reconcile("")


class TestMergeFailures:
    @pytest.mark.asyncio
    async def test_failed_group_does_not_stop_other_groups(
        self, test_session, make_category, make_transaction, monkeypatch
    ):
        food = await make_category("Food")
        food_dup = await make_category("food")
        travel = await make_category("Travel")
        travel_dup = await make_category("TRAVEL")
        await make_transaction("1.00", WHEN, food_dup.id)
        await make_transaction("2.00", WHEN, travel_dup.id)

        original = TransactionRepository.reassign_category

        async def flaky_reassign(self, user_id, from_category_id, to_category_id):
            if from_category_id == food_dup.id:
                raise OperationalError("UPDATE transactions", {}, Exception("database is locked"))
            return await original(self, user_id, from_category_id, to_category_id)

        monkeypatch.setattr(TransactionRepository, "reassign_category", flaky_reassign)

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert report.failed_groups == ["food"]
        assert [(a.keep_id, a.removed_id) for a in report.actions] == [(travel.id, travel_dup.id)]
        assert not report.is_clean

        names = await category_names(test_session)
        assert food_dup.id in names
        assert travel_dup.id not in names
        assert await transaction_counts(test_session) == {food_dup.id: 1, travel.id: 1}

        # A later pass with a healthy store finishes the job
        monkeypatch.setattr(TransactionRepository, "reassign_category", original)
        retry = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert [(a.keep_id, a.removed_id) for a in retry.actions] == [(food.id, food_dup.id)]
        assert retry.failed_groups == []
        assert await transaction_counts(test_session) == {food.id: 1, travel.id: 1}

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_merges_of_the_group(
        self, test_session, make_category, make_transaction, monkeypatch
    ):
        food = await make_category("Food")
        second = await make_category("food")
        third = await make_category("FOOD")
        await make_transaction("1.00", WHEN, second.id)
        await make_transaction("1.00", WHEN, third.id)

        original = TransactionRepository.reassign_category

        async def flaky_reassign(self, user_id, from_category_id, to_category_id):
            if from_category_id == third.id:
                raise OperationalError("UPDATE transactions", {}, Exception("disk I/O error"))
            return await original(self, user_id, from_category_id, to_category_id)

        monkeypatch.setattr(TransactionRepository, "reassign_category", flaky_reassign)

        report = await CategoryReconciliationService(test_session).reconcile(USER_ID)

        assert [(a.keep_id, a.removed_id) for a in report.actions] == [(food.id, second.id)]
        assert report.failed_groups == ["food"]
        assert await transaction_counts(test_session) == {food.id: 1, third.id: 1}
