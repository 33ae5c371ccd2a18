"""Category references as stored on transactions.

Older clients wrote the literal ``"misc"`` into ``transactions.category_id``
instead of the id of a "Misc" category. The reference is parsed into a
tagged value at the boundary so callers never compare against the magic
string themselves.
"""
from dataclasses import dataclass
from typing import Optional, Union

from app.config import get_settings


@dataclass(frozen=True)
class RealCategoryId:
    id: str


@dataclass(frozen=True)
class LegacySentinel:
    name: str


CategoryRef = Union[RealCategoryId, LegacySentinel]


def is_legacy_sentinel(raw: Optional[str]) -> bool:
    if not raw:
        return False
    return raw.strip().lower() == get_settings().LEGACY_CATEGORY_SENTINEL.lower()


def parse_category_ref(raw: Optional[str]) -> Optional[CategoryRef]:
    """Parse a stored reference. Empty values mean "no category"."""
    if raw is None or not raw.strip():
        return None
    if is_legacy_sentinel(raw):
        return LegacySentinel(name=raw.strip())
    return RealCategoryId(id=raw.strip())
