"""
In-memory tag store.

Tags have globally unique normalized names; synonyms share the same name
index, so any spelling that normalizes to a known name or synonym
resolves to the same tag id. Parent/child links are always written in
pairs under the store lock.
"""

import asyncio
import math
import re
import time
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from hinata.config import TagStoreConfig
from hinata.core.batch import require_id, run_batch
from hinata.core.events import EventBus
from hinata.core.validation import as_update_dict, validate_model
from hinata.models.events import StoreEvent, TagCreated, TagDeleted, TagsCleanedUp, TagUsed
from hinata.models.query import BatchOperation, BatchOperationType, BatchResult
from hinata.models.relation import CreatedBy
from hinata.models.stats import IndexReport
from hinata.models.tag import (
    CATEGORY_COLORS,
    RecommendationOptions,
    Tag,
    TagCategory,
    TagHierarchyNode,
    TagMetadata,
    TagQuery,
    TagRecommendation,
    TagStats,
    TagType,
    TagUsageRecord,
    UsageMethod,
)
from hinata.utils.exceptions import (
    ConsistencyError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from hinata.utils.logger import get_logger
from hinata.utils.text import extract_keywords, words
from hinata.utils.timeutils import utc_now

logger = get_logger(__name__)

WEEK_MS = 7 * 24 * 60 * 60 * 1000
ACTIVE_WINDOW = timedelta(days=30)

SYSTEM_TAGS: list[tuple[str, TagCategory, str]] = [
    ("important", TagCategory.PRIORITY, "High priority content"),
    ("todo", TagCategory.STATUS, "Needs follow-up"),
    ("done", TagCategory.STATUS, "Completed"),
    ("draft", TagCategory.STATUS, "Work in progress"),
    ("archived", TagCategory.STATUS, "No longer active"),
]

TECHNICAL_KEYWORDS = ("api", "database", "algorithm", "code", "function")
TOPIC_KEYWORDS = ("business", "marketing", "design", "research")

# Recommendation sources: (score, confidence); popularity scores by tag weight
CONTENT_MATCH = (0.8, 0.7)
POPULARITY_CONFIDENCE = 0.5
RELATED_MATCH = (0.6, 0.6)
POPULAR_CANDIDATES = 5
DEFAULT_RECOMMENDATION_LIMIT = 10
DEFAULT_MIN_CONFIDENCE = 0.3

_WHITESPACE = re.compile(r"\s+")

SORT_KEYS = {
    "name": lambda t: t.name,
    "usage": lambda t: t.usage_count,
    "created": lambda t: t.created_at,
    "last_used": lambda t: t.last_used or datetime.min.replace(tzinfo=t.created_at.tzinfo),
    "weight": lambda t: t.weight,
}

UPDATABLE_FIELDS = frozenset({"description", "color", "icon", "category", "type", "metadata"})
CREATE_FIELDS = UPDATABLE_FIELDS | {"name", "parent_id", "synonyms", "related_tags"}


def normalize_tag_name(name: str) -> str:
    """Lower-case, trim and replace whitespace runs with underscores."""
    return _WHITESPACE.sub("_", name.strip().lower())


def categorize_keyword(keyword: str) -> TagCategory:
    """Category guessed for an extracted keyword."""
    if any(word in keyword for word in TECHNICAL_KEYWORDS):
        return TagCategory.TECHNICAL
    if any(word in keyword for word in TOPIC_KEYWORDS):
        return TagCategory.TOPIC
    return TagCategory.OTHER


def compute_weight(usage_count: int, last_used: datetime, now: datetime) -> float:
    """
    ``min(1, log(usage_count + 1) / 10 * 1 / (1 + age_ms / 7 days))``.

    ``age_ms`` is the time since the tag was last used.
    """
    age_ms = max(0.0, (now - last_used).total_seconds() * 1000)
    recency = 1 / (1 + age_ms / WEEK_MS)
    return min(1.0, math.log(usage_count + 1) / 10 * recency)


class TagStore:
    """Tags with hierarchy, synonyms, usage tracking, recommendation and extraction."""

    def __init__(self, config: TagStoreConfig | None = None, event_bus: EventBus | None = None):
        """
        Initialize the tag store.

        System tags are seeded by ``initialize()``.

        Args:
            config: TTLs, hierarchy depth and feature switches
            event_bus: Receives lifecycle events (optional)
        """
        self.config = config or TagStoreConfig()
        self.event_bus = event_bus
        self._tags: dict[str, Tag] = {}
        self._name_index: dict[str, str] = {}
        self._by_type: dict[TagType, set[str]] = defaultdict(set)
        self._by_category: dict[TagCategory, set[str]] = defaultdict(set)
        self._usage: dict[str, list[TagUsageRecord]] = defaultdict(list)
        self._lock = asyncio.Lock()
        logger.info("TagStore initialized")

    def __len__(self) -> int:
        return len(self._tags)

    async def initialize(self) -> None:
        """Seed the fixed system tags. Safe to call repeatedly."""
        for name, category, description in SYSTEM_TAGS:
            await self.create_tag(
                name,
                type=TagType.SYSTEM,
                category=category,
                description=description,
                metadata={"created_by": CreatedBy.SYSTEM},
            )
        logger.info(f"System tags seeded ({len(SYSTEM_TAGS)})")

    async def _publish(self, events: list[StoreEvent]) -> None:
        if self.event_bus is None:
            return
        for event in events:
            await self.event_bus.publish(event)

    # ═══════════════════════════════════════════════════════════
    # INTERNAL HELPERS (callers hold the lock)
    # ═══════════════════════════════════════════════════════════

    def _require(self, tag_id: str) -> Tag:
        tag = self._tags.get(tag_id)
        if tag is None:
            raise NotFoundError(f"Tag not found: {tag_id}", context={"tag_id": tag_id})
        return tag

    def _resolve(self, name_or_id: str) -> str | None:
        if name_or_id in self._tags:
            return name_or_id
        return self._name_index.get(normalize_tag_name(name_or_id))

    def _depth(self, tag: Tag) -> int:
        depth = 1
        while tag.parent_id is not None:
            tag = self._tags[tag.parent_id]
            depth += 1
        return depth

    def _height(self, tag: Tag) -> int:
        if not tag.children_ids:
            return 1
        return 1 + max(self._height(self._tags[child]) for child in tag.children_ids)

    def _descendants(self, tag: Tag) -> list[Tag]:
        found: list[Tag] = []
        for child_id in tag.children_ids:
            child = self._tags[child_id]
            found.append(child)
            found.extend(self._descendants(child))
        return found

    def _check_synonym(self, synonym: str, tag_id: str | None) -> None:
        owner = self._name_index.get(synonym)
        if owner is not None and owner != tag_id:
            raise DuplicateError(
                f"Synonym '{synonym}' already resolves to tag {owner}",
                context={"synonym": synonym, "tag_id": owner},
            )

    def _check_parent(self, tag: Tag, parent_id: str) -> Tag:
        parent = self._require(parent_id)
        ancestor: Tag | None = parent
        while ancestor is not None:
            if ancestor.id == tag.id:
                raise ConsistencyError(
                    f"Setting parent {parent_id} on {tag.id} would create a cycle",
                    context={"tag_id": tag.id, "parent_id": parent_id},
                )
            ancestor = self._tags.get(ancestor.parent_id) if ancestor.parent_id else None
        subtree = self._height(tag) if tag.id in self._tags else 1
        if self._depth(parent) + subtree > self.config.max_hierarchy_depth:
            raise ConsistencyError(
                f"Tag hierarchy deeper than {self.config.max_hierarchy_depth} levels",
                context={"tag_id": tag.id, "parent_id": parent_id},
            )
        return parent

    def _attach(self, tag: Tag, parent: Tag | None) -> None:
        if tag.parent_id is not None:
            old_parent = self._tags.get(tag.parent_id)
            if old_parent is not None and tag.id in old_parent.children_ids:
                old_parent.children_ids.remove(tag.id)
        tag.parent_id = parent.id if parent else None
        if parent is not None and tag.id not in parent.children_ids:
            parent.children_ids.append(tag.id)

    def _link_related(self, tag: Tag, other: Tag) -> None:
        if other.id not in tag.related_tags:
            tag.related_tags.append(other.id)
        if tag.id not in other.related_tags:
            other.related_tags.append(tag.id)

    def _index(self, tag: Tag) -> None:
        self._tags[tag.id] = tag
        self._name_index[tag.name] = tag.id
        for synonym in tag.synonyms:
            self._name_index[synonym] = tag.id
        self._by_type[tag.type].add(tag.id)
        self._by_category[tag.category].add(tag.id)

    def _unindex_facets(self, tag: Tag) -> None:
        for index, key in ((self._by_type, tag.type), (self._by_category, tag.category)):
            bucket = index.get(key)
            if bucket is not None:
                bucket.discard(tag.id)
                if not bucket:
                    del index[key]

    def _delete(self, tag: Tag) -> None:
        self._attach(tag, None)
        for child_id in tag.children_ids:
            child = self._tags.get(child_id)
            if child is not None:
                child.parent_id = None
        for related_id in tag.related_tags:
            related = self._tags.get(related_id)
            if related is not None and tag.id in related.related_tags:
                related.related_tags.remove(tag.id)
        for name in [tag.name, *tag.synonyms]:
            if self._name_index.get(name) == tag.id:
                del self._name_index[name]
        self._unindex_facets(tag)
        self._usage.pop(tag.id, None)
        del self._tags[tag.id]

    # ═══════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════

    async def create_tag(
        self,
        name: str,
        type: TagType | str = TagType.USER,
        category: TagCategory | str = TagCategory.OTHER,
        description: str | None = None,
        color: str | None = None,
        icon: str | None = None,
        parent_id: str | None = None,
        synonyms: Iterable[str] | None = None,
        related_tags: Iterable[str] | None = None,
        metadata: TagMetadata | dict[str, Any] | None = None,
    ) -> str:
        """
        Create a tag, or return the id the normalized name already resolves to.

        Args:
            name: Display name; stored normalized
            type: Tag origin
            category: Semantic category (also selects the default color)
            description: Optional description
            color: Overrides the category color
            icon: Optional icon
            parent_id: Optional parent tag
            synonyms: Alternative names resolving to this tag
            related_tags: Ids of related tags (linked both ways)
            metadata: Provenance and expiry

        Returns:
            Tag id

        Raises:
            ValidationError: If the name is empty or a field is invalid
            NotFoundError: If ``parent_id`` or a related tag doesn't exist
            DuplicateError: If a synonym already belongs to another tag
            ConsistencyError: If the parent would exceed the hierarchy depth
        """
        normalized = normalize_tag_name(name or "")
        if not normalized:
            raise ValidationError("Tag name cannot be empty")
        synonym_names = [normalize_tag_name(s) for s in synonyms or ()]
        synonym_names = list(dict.fromkeys(s for s in synonym_names if s and s != normalized))

        async with self._lock:
            existing_id = self._name_index.get(normalized)
            if existing_id is not None:
                logger.debug(
                    "Tag '{}' already exists: {}",
                    normalized,
                    existing_id,
                    extra={"tag_id": existing_id},
                )
                return existing_id

            for synonym in synonym_names:
                self._check_synonym(synonym, None)
            related = [self._require(rid) for rid in dict.fromkeys(related_tags or ())]

            tag = validate_model(
                Tag,
                {
                    "name": normalized,
                    "type": type,
                    "category": category,
                    "description": description,
                    "icon": icon,
                    "synonyms": synonym_names,
                    "metadata": metadata or {},
                },
                "tag",
            )
            tag.color = color or CATEGORY_COLORS[tag.category]
            parent = self._check_parent(tag, parent_id) if parent_id else None

            self._index(tag)
            self._attach(tag, parent)
            for other in related:
                self._link_related(tag, other)

        logger.info(
            "Tag created: {} ({})",
            tag.name,
            tag.id,
            extra={"tag_id": tag.id, "type": tag.type.value, "category": tag.category.value},
        )
        await self._publish([TagCreated(tag_id=tag.id, name=tag.name)])
        return tag.id

    async def get_tag(self, tag_id: str) -> Tag | None:
        """Get a tag by id, or None."""
        tag = self._tags.get(tag_id)
        return tag.model_copy(deep=True) if tag else None

    async def get_tag_by_name(self, name: str) -> Tag | None:
        """Get a tag by name or synonym (any spelling that normalizes to it), or None."""
        tag_id = self._name_index.get(normalize_tag_name(name))
        return await self.get_tag(tag_id) if tag_id else None

    async def update_tag(self, tag_id: str, updates: dict[str, Any]) -> Tag:
        """
        Update a tag's descriptive fields, name or parent.

        ``name`` renames the tag (must stay unique); ``parent_id`` re-parents
        it. Other accepted fields: description, color, icon, category,
        type, metadata.

        Raises:
            NotFoundError: If the tag or new parent doesn't exist
            DuplicateError: If the new name belongs to another tag
            ConsistencyError: If re-parenting creates a cycle or exceeds the depth
            ValidationError: If a field is invalid or not updatable
        """
        updates = as_update_dict(updates)
        unknown = set(updates) - UPDATABLE_FIELDS - {"name", "parent_id"}
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {sorted(unknown)}", context={"fields": sorted(unknown)}
            )

        async with self._lock:
            tag = self._require(tag_id)
            fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
            candidate = validate_model(Tag, {**tag.model_dump(), **fields}, "tag")

            new_name = None
            if "name" in updates:
                if not isinstance(updates["name"], str):
                    raise ValidationError("Tag name must be a string", context={"tag_id": tag_id})
                new_name = normalize_tag_name(updates["name"])
                if not new_name:
                    raise ValidationError("Tag name cannot be empty")
                self._check_synonym(new_name, tag_id)
            parent = None
            if "parent_id" in updates and updates["parent_id"]:
                if not isinstance(updates["parent_id"], str):
                    raise ValidationError("Parent id must be a string", context={"tag_id": tag_id})
                parent = self._check_parent(tag, updates["parent_id"])

            self._unindex_facets(tag)
            for key in fields:
                setattr(tag, key, getattr(candidate, key))
            if new_name and new_name != tag.name:
                if self._name_index.get(tag.name) == tag_id:
                    del self._name_index[tag.name]
                tag.name = new_name
                tag.synonyms = [s for s in tag.synonyms if s != new_name]
            if "parent_id" in updates:
                self._attach(tag, parent)
            self._index(tag)
            return tag.model_copy(deep=True)

    async def delete_tag(self, tag_id: str) -> None:
        """
        Delete a tag.

        The parent loses the child link, children become roots, related
        links and usage history are dropped.

        Raises:
            NotFoundError: If the tag doesn't exist
        """
        async with self._lock:
            tag = self._require(tag_id)
            self._delete(tag)

        logger.info("Tag deleted: {}", tag.name, extra={"tag_id": tag_id})
        await self._publish([TagDeleted(tag_id=tag_id, name=tag.name)])

    # ═══════════════════════════════════════════════════════════
    # HIERARCHY, SYNONYMS, RELATED TAGS
    # ═══════════════════════════════════════════════════════════

    async def set_parent(self, tag_id: str, parent_id: str | None) -> Tag:
        """Re-parent a tag (``None`` makes it a root)."""
        return await self.update_tag(tag_id, {"parent_id": parent_id})

    async def add_synonym(self, tag_id: str, synonym: str) -> Tag:
        """
        Register an alternative name for a tag.

        Raises:
            NotFoundError: If the tag doesn't exist
            DuplicateError: If the synonym resolves to another tag
        """
        normalized = normalize_tag_name(synonym)
        if not normalized:
            raise ValidationError("Synonym cannot be empty")
        async with self._lock:
            tag = self._require(tag_id)
            self._check_synonym(normalized, tag_id)
            if normalized != tag.name and normalized not in tag.synonyms:
                tag.synonyms.append(normalized)
                self._name_index[normalized] = tag_id
            return tag.model_copy(deep=True)

    async def add_related_tag(self, tag_id: str, related_id: str) -> Tag:
        """
        Link two tags as related, in both directions.

        Raises:
            NotFoundError: If either tag doesn't exist
            ConsistencyError: If both ids are the same
        """
        if tag_id == related_id:
            raise ConsistencyError("A tag cannot be related to itself", context={"tag_id": tag_id})
        async with self._lock:
            tag = self._require(tag_id)
            self._link_related(tag, self._require(related_id))
            return tag.model_copy(deep=True)

    async def get_child_tags(self, tag_id: str) -> list[Tag]:
        """Direct children of a tag (empty for unknown tags)."""
        async with self._lock:
            tag = self._tags.get(tag_id)
            if tag is None:
                return []
            return [self._tags[cid].model_copy(deep=True) for cid in tag.children_ids]

    def _subtree(self, tag: Tag) -> TagHierarchyNode:
        children = sorted((self._tags[cid] for cid in tag.children_ids), key=lambda t: t.name)
        return TagHierarchyNode(
            tag=tag.model_copy(deep=True),
            children=[self._subtree(child) for child in children],
        )

    async def get_tag_hierarchy(self, root_id: str | None = None) -> list[TagHierarchyNode]:
        """
        Tag trees.

        Args:
            root_id: Single root to expand; all root tags when omitted

        Raises:
            NotFoundError: If ``root_id`` doesn't exist
        """
        async with self._lock:
            if root_id is not None:
                return [self._subtree(self._require(root_id))]
            roots = sorted(
                (t for t in self._tags.values() if t.parent_id is None), key=lambda t: t.name
            )
            return [self._subtree(root) for root in roots]

    # ═══════════════════════════════════════════════════════════
    # QUERY
    # ═══════════════════════════════════════════════════════════

    async def query_tags(self, query: TagQuery | dict[str, Any] | None = None) -> list[Tag]:
        """
        Filter, sort and paginate tags.

        Type and category filters narrow candidates through the indexes.
        ``name_pattern`` is a case-insensitive regular expression searched
        in the tag name. ``include_children`` adds the descendants of every
        match.

        Raises:
            ValidationError: If the query or the name pattern is invalid
        """
        if query is None:
            query = TagQuery()
        elif not isinstance(query, TagQuery):
            query = validate_model(TagQuery, query, "tag query")

        pattern = None
        if query.name_pattern:
            try:
                pattern = re.compile(query.name_pattern, re.IGNORECASE)
            except re.error as e:
                raise ValidationError(f"Invalid name pattern: {e}") from e

        async with self._lock:
            candidate_ids = set(self._tags)
            if query.types:
                candidate_ids &= {tid for t in query.types for tid in self._by_type.get(t, ())}
            if query.categories:
                candidate_ids &= {
                    tid for c in query.categories for tid in self._by_category.get(c, ())
                }

            matched: dict[str, Tag] = {}
            for tag_id in candidate_ids:
                tag = self._tags[tag_id]
                if pattern and not pattern.search(tag.name):
                    continue
                if query.min_usage is not None and tag.usage_count < query.min_usage:
                    continue
                if query.max_usage is not None and tag.usage_count > query.max_usage:
                    continue
                if query.date_range and not query.date_range.contains(tag.created_at):
                    continue
                if query.parent_id is not None and tag.parent_id != query.parent_id:
                    continue
                matched[tag_id] = tag

            if query.include_children:
                for tag in list(matched.values()):
                    for child in self._descendants(tag):
                        matched.setdefault(child.id, child)

            result = sorted(
                matched.values(), key=SORT_KEYS[query.sort_by], reverse=query.sort_order == "desc"
            )
            end = None if query.limit is None else query.offset + query.limit
            return [t.model_copy(deep=True) for t in result[query.offset : end]]

    # ═══════════════════════════════════════════════════════════
    # USAGE
    # ═══════════════════════════════════════════════════════════

    async def use_tag(
        self,
        tag_id: str,
        item_id: str,
        method: UsageMethod = "manual",
        context: str | None = None,
    ) -> TagUsageRecord:
        """
        Record that a tag was applied to an item.

        Increments ``usage_count``, stamps ``last_used`` and recomputes
        ``weight``.

        Raises:
            NotFoundError: If the tag doesn't exist
            ValidationError: If the method is unknown
        """
        record = validate_model(
            TagUsageRecord,
            {"tag_id": tag_id, "item_id": item_id, "method": method, "context": context},
            "tag usage",
        )

        async with self._lock:
            tag = self._require(tag_id)
            tag.usage_count += 1
            tag.last_used = record.timestamp
            tag.weight = compute_weight(tag.usage_count, tag.last_used, record.timestamp)
            self._usage[tag_id].append(record)
            usage_count = tag.usage_count

        logger.debug(
            "Tag used: {} on {}",
            tag_id,
            item_id,
            extra={"tag_id": tag_id, "item_id": item_id, "usage_count": usage_count},
        )
        await self._publish([TagUsed(tag_id=tag_id, item_id=item_id, usage_count=usage_count)])
        return record

    async def get_usage_history(self, tag_id: str, limit: int | None = None) -> list[TagUsageRecord]:
        """Usage records of a tag, newest first."""
        async with self._lock:
            records = list(reversed(self._usage.get(tag_id, [])))
        return records[:limit] if limit is not None else records

    # ═══════════════════════════════════════════════════════════
    # RECOMMENDATION & EXTRACTION
    # ═══════════════════════════════════════════════════════════

    def _content_matches(self, content: str) -> list[Tag]:
        text = f" {' '.join(words(content))} "
        matches = []
        for tag in self._tags.values():
            for name in (tag.name, *tag.synonyms):
                if f" {name.replace('_', ' ')} " in text:
                    matches.append(tag)
                    break
        return matches

    async def recommend_tags(
        self,
        item_id: str,
        content: str,
        existing_tags: Iterable[str] | None = None,
        options: RecommendationOptions | dict[str, Any] | None = None,
    ) -> list[TagRecommendation]:
        """
        Recommend tags for an item.

        Three candidate sources are merged, keeping the best score per tag:

        - content match: the tag name or a synonym appears in ``content`` (0.8, confidence 0.7)
        - popularity: the five most used tags, scored by weight (confidence 0.5)
        - related: related tags of ``existing_tags`` (0.6, confidence 0.6)

        ``content_based``, ``history_based`` and ``similarity_based`` in
        ``options`` switch the three sources off individually.

        Tags in ``existing_tags`` (ids or names) are never recommended.

        Returns:
            Recommendations sorted by score, highest first
        """
        if options is None:
            options = RecommendationOptions()
        elif not isinstance(options, RecommendationOptions):
            options = validate_model(RecommendationOptions, options, "recommendation options")
        limit = options.limit if options.limit is not None else DEFAULT_RECOMMENDATION_LIMIT
        min_confidence = (
            options.min_confidence if options.min_confidence is not None else DEFAULT_MIN_CONFIDENCE
        )
        if not self.config.enable_recommendation:
            return []

        best: dict[str, TagRecommendation] = {}

        def offer(tag: Tag, score: float, confidence: float, reason: str) -> None:
            if tag.id in excluded:
                return
            current = best.get(tag.id)
            if current is None or score > current.score:
                best[tag.id] = TagRecommendation(
                    tag_id=tag.id, tag_name=tag.name, score=score, confidence=confidence, reason=reason
                )

        async with self._lock:
            existing_ids = [self._resolve(t) for t in existing_tags or ()]
            excluded = {tid for tid in existing_ids if tid is not None}

            if options.content_based:
                for tag in self._content_matches(content):
                    offer(tag, *CONTENT_MATCH, "content_match")

            if options.history_based:
                popular = sorted(
                    (t for t in self._tags.values() if t.usage_count > 0 and t.id not in excluded),
                    key=lambda t: (-t.usage_count, t.name),
                )[:POPULAR_CANDIDATES]
                for tag in popular:
                    offer(tag, tag.weight, POPULARITY_CONFIDENCE, "popularity")

            if options.similarity_based:
                for tag_id in excluded:
                    for related_id in self._tags[tag_id].related_tags:
                        related = self._tags.get(related_id)
                        if related is not None:
                            offer(related, *RELATED_MATCH, "related")

        ranked = sorted(
            (r for r in best.values() if r.confidence >= min_confidence),
            key=lambda r: (-r.score, r.tag_name),
        )
        logger.debug(
            "Recommended {} tags for {}",
            min(len(ranked), limit),
            item_id,
            extra={"item_id": item_id, "candidates": len(best)},
        )
        return ranked[:limit]

    async def extract_tags(
        self, content: str, max_tags: int = 5, min_confidence: float = 0.5
    ) -> list[Tag]:
        """
        Frequency-ranked keyword extraction.

        Punctuation is stripped, words of three characters or fewer are
        dropped. Keywords without a tag become AI_EXTRACTED tags expiring
        after ``ai_tag_ttl_days`` and record ``min_confidence`` as their
        confidence.

        Returns:
            Existing or newly created tags, most frequent keyword first
        """
        if not self.config.enable_auto_extraction:
            return []

        tags: list[Tag] = []
        for keyword in extract_keywords(content, limit=max_tags):
            existing = await self.get_tag_by_name(keyword)
            if existing is not None:
                tags.append(existing)
                continue
            tag_id = await self.create_tag(
                keyword,
                type=TagType.AI_EXTRACTED,
                category=categorize_keyword(keyword),
                metadata={
                    "created_by": CreatedBy.AI,
                    "confidence": min_confidence,
                    "expires_at": utc_now() + timedelta(days=self.config.ai_tag_ttl_days),
                },
            )
            tags.append(await self.get_tag(tag_id))
        return tags

    # ═══════════════════════════════════════════════════════════
    # STATISTICS & MAINTENANCE
    # ═══════════════════════════════════════════════════════════

    async def get_stats(self) -> TagStats:
        """Counts, type/category distributions and usage buckets."""
        async with self._lock:
            tags = list(self._tags.values())
            usage_records = sum(len(records) for records in self._usage.values())
        if not tags:
            return TagStats()

        now = utc_now()
        buckets = {"high": 0, "medium": 0, "low": 0}
        for tag in tags:
            if tag.usage_count > 100:
                buckets["high"] += 1
            elif tag.usage_count >= 10:
                buckets["medium"] += 1
            else:
                buckets["low"] += 1

        return TagStats(
            total_tags=len(tags),
            active_tags=sum(1 for t in tags if t.last_used and now - t.last_used <= ACTIVE_WINDOW),
            type_distribution=dict(Counter(t.type.value for t in tags)),
            category_distribution=dict(Counter(t.category.value for t in tags)),
            usage_distribution=buckets,
            average_usage=sum(t.usage_count for t in tags) / len(tags),
            total_usage_records=usage_records,
        )

    def _is_stale(self, tag: Tag, now: datetime) -> bool:
        if tag.metadata.expires_at is not None and tag.metadata.expires_at <= now:
            return True
        unused_cutoff = now - timedelta(days=self.config.unused_tag_ttl_days)
        return tag.type == TagType.SYSTEM and tag.usage_count == 0 and tag.created_at < unused_cutoff

    async def cleanup(self) -> int:
        """
        Remove expired tags and unused system tags older than the TTL.

        Candidates are snapshotted first, then removed one at a time so the
        lock is held only per removal.

        Returns:
            Number of tags removed
        """
        now = utc_now()
        async with self._lock:
            candidates = [t.id for t in self._tags.values() if self._is_stale(t, now)]

        removed = 0
        for tag_id in candidates:
            async with self._lock:
                tag = self._tags.get(tag_id)
                if tag is None or not self._is_stale(tag, now):
                    continue
                self._delete(tag)
                removed += 1
            await asyncio.sleep(0)

        logger.info("Tag cleanup removed {} tags", removed, extra={"removed": removed})
        await self._publish([TagsCleanedUp(removed=removed)])
        return removed

    async def rebuild_indexes(self) -> IndexReport:
        """Rebuild the name, type and category indexes."""
        started = time.perf_counter()
        async with self._lock:
            self._name_index.clear()
            self._by_type.clear()
            self._by_category.clear()
            for tag in list(self._tags.values()):
                self._index(tag)
            count = len(self._tags)
        return IndexReport(
            items_indexed=count,
            indexes_rebuilt=3,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def close(self) -> None:
        """Drop all tags, indexes and usage history."""
        async with self._lock:
            count = len(self._tags)
            self._tags.clear()
            self._name_index.clear()
            self._by_type.clear()
            self._by_category.clear()
            self._usage.clear()
        logger.info(f"TagStore closed ({count} tags dropped)")

    # ═══════════════════════════════════════════════════════════
    # BATCH
    # ═══════════════════════════════════════════════════════════

    async def batch(self, operations: Iterable[BatchOperation | dict[str, Any]]) -> BatchResult:
        """
        Apply create/update/delete operations without stopping at the first failure.

        CREATE takes the ``create_tag`` arguments in ``data``; UPDATE takes
        the ``update_tag`` fields.
        """

        async def _create(op: BatchOperation) -> dict[str, str]:
            if "name" not in op.data:
                raise ValidationError("CREATE requires a name")
            unknown = set(op.data) - CREATE_FIELDS
            if unknown:
                raise ValidationError(f"Unknown tag fields: {sorted(unknown)}")
            return {"id": await self.create_tag(**op.data)}

        async def _update(op: BatchOperation) -> Tag:
            return await self.update_tag(require_id(op), op.data)

        async def _delete(op: BatchOperation) -> dict[str, str]:
            tag_id = require_id(op)
            await self.delete_tag(tag_id)
            return {"deleted": tag_id}

        return await run_batch(
            operations,
            {
                BatchOperationType.CREATE: _create,
                BatchOperationType.UPDATE: _update,
                BatchOperationType.DELETE: _delete,
            },
            "tags",
        )
