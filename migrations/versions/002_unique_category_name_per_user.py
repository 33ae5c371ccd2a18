"""Unique category name per user (case-insensitive)

Revision ID: 002_unique_category_name
Revises: 001_categories_transactions
Create Date: 2026-10-19

Turns the per-user naming convention into a constraint so new duplicates
cannot be created. CategoryService.find_or_create absorbs the resulting
IntegrityError when two requests create the same name at once.

Existing duplicates make this index fail to build. Run
`spendwise reconcile <uid>` for the affected users first; this query
lists them:

    SELECT user_id, lower(trim(name)), count(*)
    FROM categories GROUP BY 1, 2 HAVING count(*) > 1;
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_unique_category_name"
down_revision: Union[str, None] = "001_categories_transactions"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_categories_user_lower_name "
        "ON categories (user_id, lower(trim(name)))"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_categories_user_lower_name")
