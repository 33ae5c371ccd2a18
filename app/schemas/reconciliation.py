from typing import List

from pydantic import BaseModel, ConfigDict

# removed_id used for the action that summarises orphaned transactions
ORPHANED_REMOVED_ID = "orphaned"


class MergeAction(BaseModel):
    """One corrective move: transactions from removed_id now point at keep_id."""

    model_config = ConfigDict(frozen=True)

    keep_id: str
    removed_id: str  # A deleted duplicate category id, or "orphaned"
    moved_transactions: int


class ReconciliationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    uncategorized_category_id: str
    uncategorized_created: bool = False
    legacy_fixed: int = 0
    orphaned_fixed: int = 0
    actions: List[MergeAction]
    failed_groups: List[str] = []  # Normalised names whose merge hit a store error

    @property
    def is_clean(self) -> bool:
        """True when the pass changed nothing, i.e. the owner's data was consistent."""
        return (
            not self.actions
            and not self.failed_groups
            and not self.legacy_fixed
            and not self.uncategorized_created
        )

