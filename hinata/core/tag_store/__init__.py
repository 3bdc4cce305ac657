"""Tag storage, recommendation and keyword extraction."""

from hinata.core.tag_store.tag_store import (
    SYSTEM_TAGS,
    TagStore,
    categorize_keyword,
    compute_weight,
    normalize_tag_name,
)

__all__ = [
    "TagStore",
    "SYSTEM_TAGS",
    "normalize_tag_name",
    "categorize_keyword",
    "compute_weight",
]
