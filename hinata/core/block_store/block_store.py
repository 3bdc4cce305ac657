"""
In-memory knowledge block store.

Owns knowledge blocks together with their note items and block-to-block
references. Reference edges live on the source block; the target block
keeps the source id in ``backlinks``. Both sides are only ever written by
the paired helpers ``_link`` and ``_unlink``, inside one critical section,
so no reader can observe one side without the other.
"""

import asyncio
import time
from collections import Counter, defaultdict
from collections.abc import Iterable
from typing import Any

from hinata.core.batch import require_id, run_batch
from hinata.core.validation import as_update_dict, deep_merge, validate_model
from hinata.models.knowledge_block import (
    KnowledgeBlock,
    KnowledgeBlockReference,
    NoteItem,
    ReferenceType,
)
from hinata.models.query import (
    BatchOperation,
    BatchOperationType,
    BatchResult,
    SearchQuery,
    SearchResult,
)
from hinata.models.stats import BlockStatistics, IndexReport, PopularTag, TagCount
from hinata.utils.exceptions import ConsistencyError, NotFoundError, ValidationError
from hinata.utils.logger import get_logger
from hinata.utils.text import matches_all_terms
from hinata.utils.timeutils import utc_now

logger = get_logger(__name__)

# Written by the store only; ignored when passed to create/update
BLOCK_OWNED_FIELDS = frozenset(
    {"id", "created_at", "updated_at", "note_items", "references", "backlinks"}
)
NOTE_ITEM_OWNED_FIELDS = frozenset({"id", "knowledge_block_id", "created_at", "updated_at"})

SORT_FIELDS = {
    "created_at": lambda b: b.created_at,
    "updated_at": lambda b: b.updated_at,
    "highlight": lambda b: b.highlight.lower(),
}


def _strip(data: dict[str, Any], owned: frozenset[str]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in owned}


class KnowledgeBlockStore:
    """Knowledge blocks, note items, references and backlinks."""

    def __init__(self):
        self._blocks: dict[str, KnowledgeBlock] = {}
        self._note_owner: dict[str, str] = {}
        self._reference_owner: dict[str, str] = {}
        self._by_library_item: dict[str, set[str]] = defaultdict(set)
        self._by_user: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        logger.info("KnowledgeBlockStore initialized")

    def __len__(self) -> int:
        return len(self._blocks)

    # ═══════════════════════════════════════════════════════════
    # INTERNAL HELPERS (callers hold the lock)
    # ═══════════════════════════════════════════════════════════

    def _require_block(self, block_id: str) -> KnowledgeBlock:
        block = self._blocks.get(block_id)
        if block is None:
            raise NotFoundError(
                f"Knowledge block not found: {block_id}", context={"block_id": block_id}
            )
        return block

    def _require_note_item(self, note_item_id: str) -> tuple[KnowledgeBlock, NoteItem]:
        block_id = self._note_owner.get(note_item_id)
        if block_id is None:
            raise NotFoundError(
                f"Note item not found: {note_item_id}", context={"note_item_id": note_item_id}
            )
        block = self._blocks[block_id]
        item = next(i for i in block.note_items if i.id == note_item_id)
        return block, item

    def _index_block(self, block: KnowledgeBlock) -> None:
        self._by_library_item[block.library_item_id].add(block.id)
        self._by_user[block.user_id].add(block.id)

    def _unindex_block(self, block: KnowledgeBlock) -> None:
        for index, key in (
            (self._by_library_item, block.library_item_id),
            (self._by_user, block.user_id),
        ):
            bucket = index.get(key)
            if bucket is not None:
                bucket.discard(block.id)
                if not bucket:
                    del index[key]

    def _link(
        self, source: KnowledgeBlock, target: KnowledgeBlock, reference: KnowledgeBlockReference
    ) -> None:
        source.references.append(reference)
        self._reference_owner[reference.id] = source.id
        if source.id not in target.backlinks:
            target.backlinks.append(source.id)
        now = utc_now()
        source.updated_at = now
        target.updated_at = now

    def _unlink(self, source: KnowledgeBlock, reference: KnowledgeBlockReference) -> None:
        source.references = [r for r in source.references if r.id != reference.id]
        self._reference_owner.pop(reference.id, None)
        now = utc_now()
        source.updated_at = now

        target = self._blocks.get(reference.target_block_id)
        if target is None:
            return
        # Keep the backlink while another reference from the same source remains
        still_linked = any(r.target_block_id == target.id for r in source.references)
        if not still_linked and source.id in target.backlinks:
            target.backlinks.remove(source.id)
            target.updated_at = now

    @staticmethod
    def _sort_note_items(block: KnowledgeBlock) -> None:
        # list.sort is stable: equal orders keep insertion order
        block.note_items.sort(key=lambda item: item.order)

    # ═══════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════

    async def create(self, data: dict[str, Any] | KnowledgeBlock) -> KnowledgeBlock:
        """
        Create a knowledge block.

        Store-owned fields (id, timestamps, note items, references,
        backlinks) are ignored in ``data``.

        Args:
            data: user_id, library_item_id, HiNATA fields and optional position

        Returns:
            The created block

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if isinstance(data, KnowledgeBlock):
            data = data.model_dump()
        fields = _strip(as_update_dict(data), BLOCK_OWNED_FIELDS)
        block = validate_model(KnowledgeBlock, fields, "knowledge block")

        async with self._lock:
            self._blocks[block.id] = block
            self._index_block(block)

        logger.info(
            "Knowledge block created: {}",
            block.id,
            extra={"block_id": block.id, "user_id": block.user_id},
        )
        return block.model_copy(deep=True)

    async def get_by_id(self, block_id: str) -> KnowledgeBlock | None:
        """Get a block by id, or None."""
        block = self._blocks.get(block_id)
        return block.model_copy(deep=True) if block else None

    async def update(self, block_id: str, updates: dict[str, Any]) -> KnowledgeBlock:
        """
        Update a block's HiNATA fields, owner, library item or position.

        Raises:
            NotFoundError: If the block doesn't exist
            ValidationError: If the merged block is invalid
        """
        updates = _strip(as_update_dict(updates), BLOCK_OWNED_FIELDS)

        async with self._lock:
            existing = self._require_block(block_id)
            merged = deep_merge(existing.model_dump(), updates)
            updated = validate_model(KnowledgeBlock, merged, "knowledge block")
            updated.updated_at = utc_now()

            self._unindex_block(existing)
            self._blocks[block_id] = updated
            self._index_block(updated)

        logger.info("Knowledge block updated: {}", block_id, extra={"block_id": block_id})
        return updated.model_copy(deep=True)

    async def delete(self, block_id: str) -> None:
        """
        Delete a block with its note items and every reference touching it.

        Outgoing references disappear with the block and the targets lose
        the backlink. Incoming references are removed from their source
        blocks.

        Raises:
            NotFoundError: If the block doesn't exist
        """
        async with self._lock:
            block = self._require_block(block_id)

            for reference in list(block.references):
                self._unlink(block, reference)
            for source_id in list(block.backlinks):
                source = self._blocks.get(source_id)
                if source is None:
                    continue
                for reference in [r for r in source.references if r.target_block_id == block_id]:
                    self._unlink(source, reference)

            for item in block.note_items:
                self._note_owner.pop(item.id, None)
            self._unindex_block(block)
            del self._blocks[block_id]

        logger.info("Knowledge block deleted: {}", block_id, extra={"block_id": block_id})

    async def get_by_library_item_id(self, library_item_id: str) -> list[KnowledgeBlock]:
        """Blocks of a library item, oldest first."""
        async with self._lock:
            blocks = [self._blocks[bid] for bid in self._by_library_item.get(library_item_id, ())]
        blocks.sort(key=lambda b: b.created_at)
        return [b.model_copy(deep=True) for b in blocks]

    async def get_by_user_id(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[KnowledgeBlock]:
        """A user's blocks, newest first."""
        async with self._lock:
            blocks = [self._blocks[bid] for bid in self._by_user.get(user_id, ())]
        blocks.sort(key=lambda b: b.created_at, reverse=True)
        return [b.model_copy(deep=True) for b in blocks[offset : offset + limit]]

    # ═══════════════════════════════════════════════════════════
    # SEARCH
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _matches(block: KnowledgeBlock, query: SearchQuery) -> bool:
        filters = query.filters
        if filters.user_id and block.user_id != filters.user_id:
            return False
        if filters.tags:
            wanted = {t.lower() for t in filters.tags}
            if not wanted & {t.lower() for t in block.tag}:
                return False
        if filters.access_level and block.access not in filters.access_level:
            return False
        if filters.date_range and not filters.date_range.contains(block.created_at):
            return False
        return matches_all_terms(block.text_blob(), query.query)

    async def search(self, query: SearchQuery | dict[str, Any]) -> SearchResult[KnowledgeBlock]:
        """
        Filter, match, sort and paginate knowledge blocks.

        The text match covers HiNATA fields and note item content.

        Raises:
            ValidationError: If the query is malformed or the sort field unknown
        """
        started = time.perf_counter()
        if not isinstance(query, SearchQuery):
            query = validate_model(SearchQuery, query, "search query")

        sort_field = query.sort.field if query.sort else "created_at"
        if sort_field not in SORT_FIELDS:
            raise ValidationError(
                f"Unknown sort field: {sort_field}", context={"allowed": sorted(SORT_FIELDS)}
            )
        descending = (query.sort.order if query.sort else "desc") == "desc"

        async with self._lock:
            if query.filters.user_id:
                candidates = self._blocks_for(query.filters.user_id)
            else:
                candidates = list(self._blocks.values())
            matched = [b for b in candidates if self._matches(b, query)]

        matched.sort(key=SORT_FIELDS[sort_field], reverse=descending)
        pagination = query.pagination
        page = matched[pagination.offset : pagination.offset + pagination.limit]

        return SearchResult[KnowledgeBlock](
            items=[b.model_copy(deep=True) for b in page],
            total=len(matched),
            page=pagination.page,
            limit=pagination.limit,
            has_more=pagination.offset + len(page) < len(matched),
            query=query.query,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    # ═══════════════════════════════════════════════════════════
    # REFERENCES
    # ═══════════════════════════════════════════════════════════

    async def add_reference(
        self,
        source_block_id: str,
        target_block_id: str,
        reference_type: ReferenceType | str = ReferenceType.STRONG,
        source_note_item_id: str | None = None,
        context: str | None = None,
    ) -> KnowledgeBlockReference:
        """
        Add a reference from one block to another and the matching backlink.

        Args:
            source_block_id: Referencing block
            target_block_id: Referenced block
            reference_type: STRONG, WEAK, HIERARCHICAL or SEMANTIC
            source_note_item_id: Optional note item of the source block the reference starts from
            context: Optional free-text context

        Returns:
            The new reference

        Raises:
            NotFoundError: If either block doesn't exist
            ConsistencyError: On a self reference or a note item of another block
            ValidationError: If the reference type is unknown
        """
        reference = validate_model(
            KnowledgeBlockReference,
            {
                "source_block_id": source_block_id,
                "source_note_item_id": source_note_item_id,
                "target_block_id": target_block_id,
                "reference_type": reference_type,
                "context": context,
            },
            "reference",
        )
        if source_block_id == target_block_id:
            raise ConsistencyError(
                "A block cannot reference itself", context={"block_id": source_block_id}
            )

        async with self._lock:
            source = self._require_block(source_block_id)
            target = self._require_block(target_block_id)
            owner = self._note_owner.get(source_note_item_id) if source_note_item_id else None
            if source_note_item_id is not None and owner != source.id:
                raise ConsistencyError(
                    f"Note item {source_note_item_id} does not belong to block {source_block_id}",
                    context={"note_item_id": source_note_item_id, "block_id": source_block_id},
                )
            self._link(source, target, reference)

        logger.info(
            "Reference added: {} -> {}",
            source_block_id,
            target_block_id,
            extra={"reference_id": reference.id, "type": reference.reference_type.value},
        )
        return reference.model_copy(deep=True)

    async def remove_reference(self, reference_id: str) -> None:
        """
        Remove a reference and, if it was the last one to its target, the backlink.

        Raises:
            NotFoundError: If the reference doesn't exist
        """
        async with self._lock:
            source_id = self._reference_owner.get(reference_id)
            if source_id is None:
                raise NotFoundError(
                    f"Reference not found: {reference_id}", context={"reference_id": reference_id}
                )
            source = self._blocks[source_id]
            reference = next(r for r in source.references if r.id == reference_id)
            self._unlink(source, reference)

        logger.info("Reference removed: {}", reference_id, extra={"reference_id": reference_id})

    async def get_references(self, block_id: str) -> list[KnowledgeBlockReference]:
        """Outgoing references of a block (empty for unknown blocks)."""
        block = self._blocks.get(block_id)
        return [r.model_copy() for r in block.references] if block else []

    async def get_backlinks(self, block_id: str) -> list[KnowledgeBlockReference]:
        """Incoming references of a block (empty for unknown blocks)."""
        async with self._lock:
            block = self._blocks.get(block_id)
            if block is None:
                return []
            return [
                r.model_copy()
                for source_id in block.backlinks
                if source_id in self._blocks
                for r in self._blocks[source_id].references
                if r.target_block_id == block_id
            ]

    # ═══════════════════════════════════════════════════════════
    # NOTE ITEMS
    # ═══════════════════════════════════════════════════════════

    async def add_note_item(self, block_id: str, data: dict[str, Any] | NoteItem) -> NoteItem:
        """
        Append a note item and re-sort the block's items by ``order``.

        Without an explicit ``order`` the item goes to the end.

        Raises:
            NotFoundError: If the block doesn't exist
            ValidationError: If the note item is invalid
        """
        if isinstance(data, NoteItem):
            data = data.model_dump()
        fields = _strip(as_update_dict(data), NOTE_ITEM_OWNED_FIELDS)

        async with self._lock:
            block = self._require_block(block_id)
            fields.setdefault("order", len(block.note_items))
            item = validate_model(NoteItem, {**fields, "knowledge_block_id": block_id}, "note item")
            block.note_items.append(item)
            self._sort_note_items(block)
            self._note_owner[item.id] = block_id
            block.updated_at = utc_now()

        logger.debug(
            "Note item added to {}: {}",
            block_id,
            item.id,
            extra={"block_id": block_id, "note_item_id": item.id},
        )
        return item.model_copy()

    async def update_note_item(self, note_item_id: str, updates: dict[str, Any]) -> NoteItem:
        """
        Update a note item's content, format or order.

        Raises:
            NotFoundError: If the note item doesn't exist
            ValidationError: If the result is invalid
        """
        updates = _strip(as_update_dict(updates), NOTE_ITEM_OWNED_FIELDS)

        async with self._lock:
            block, item = self._require_note_item(note_item_id)
            updated = validate_model(NoteItem, {**item.model_dump(), **updates}, "note item")
            now = utc_now()
            updated.updated_at = now
            block.note_items = [updated if i.id == note_item_id else i for i in block.note_items]
            self._sort_note_items(block)
            block.updated_at = now

        return updated.model_copy()

    async def remove_note_item(self, note_item_id: str) -> None:
        """
        Remove a note item.

        References that started from the item stay on the block with
        ``source_note_item_id`` cleared.

        Raises:
            NotFoundError: If the note item doesn't exist
        """
        async with self._lock:
            block, _ = self._require_note_item(note_item_id)
            block.note_items = [i for i in block.note_items if i.id != note_item_id]
            for reference in block.references:
                if reference.source_note_item_id == note_item_id:
                    reference.source_note_item_id = None
            del self._note_owner[note_item_id]
            block.updated_at = utc_now()

    async def reorder_note_items(self, block_id: str, ordered_ids: list[str]) -> list[NoteItem]:
        """
        Set each named item's ``order`` to its position in ``ordered_ids``.

        Items not named keep their previous ``order``; pass the full set to
        get a total ordering.

        Returns:
            The block's note items after re-sorting

        Raises:
            NotFoundError: If the block or any named item doesn't exist in it
        """
        async with self._lock:
            block = self._require_block(block_id)
            by_id = {item.id: item for item in block.note_items}
            missing = [nid for nid in ordered_ids if nid not in by_id]
            if missing:
                raise NotFoundError(
                    f"Note items not found in block {block_id}: {missing}",
                    context={"block_id": block_id, "note_item_ids": missing},
                )
            now = utc_now()
            for position, note_item_id in enumerate(ordered_ids):
                by_id[note_item_id].order = position
                by_id[note_item_id].updated_at = now
            self._sort_note_items(block)
            block.updated_at = now
            return [item.model_copy() for item in block.note_items]

    # ═══════════════════════════════════════════════════════════
    # STATISTICS
    # ═══════════════════════════════════════════════════════════

    def _blocks_for(self, user_id: str | None) -> list[KnowledgeBlock]:
        if user_id:
            return [self._blocks[bid] for bid in self._by_user.get(user_id, ())]
        return list(self._blocks.values())

    async def get_statistics(self, user_id: str | None = None) -> BlockStatistics:
        """Counts, top ten tags and a daily creation histogram."""
        async with self._lock:
            blocks = self._blocks_for(user_id)
        if not blocks:
            return BlockStatistics()

        note_count = sum(len(b.note_items) for b in blocks)
        tags = Counter(tag.lower() for b in blocks for tag in b.tag)
        trend = Counter(b.created_at.strftime("%Y-%m-%d") for b in blocks)

        return BlockStatistics(
            total_blocks=len(blocks),
            total_note_items=note_count,
            total_references=sum(len(b.references) for b in blocks),
            average_notes_per_block=note_count / len(blocks),
            most_used_tags=[TagCount(tag=t, count=c) for t, c in tags.most_common(10)],
            creation_trend=dict(sorted(trend.items())),
        )

    async def get_popular_tags(
        self, user_id: str | None = None, limit: int = 20
    ) -> list[PopularTag]:
        """Tags used on blocks, most frequent first, with the latest block update using them."""
        async with self._lock:
            blocks = self._blocks_for(user_id)

        popular: dict[str, PopularTag] = {}
        for block in blocks:
            for tag in {t.lower() for t in block.tag}:
                entry = popular.get(tag)
                if entry is None:
                    popular[tag] = PopularTag(tag=tag, count=1, last_used=block.updated_at)
                else:
                    entry.count += 1
                    entry.last_used = max(entry.last_used, block.updated_at)

        ranked = sorted(popular.values(), key=lambda p: (-p.count, p.tag))
        return ranked[:limit]

    async def rebuild_index(self) -> IndexReport:
        """Rebuild the library item, user, note item and reference indexes."""
        started = time.perf_counter()
        async with self._lock:
            self._by_library_item.clear()
            self._by_user.clear()
            self._note_owner.clear()
            self._reference_owner.clear()
            for block in self._blocks.values():
                self._index_block(block)
                for item in block.note_items:
                    self._note_owner[item.id] = block.id
                for reference in block.references:
                    self._reference_owner[reference.id] = block.id
            count = len(self._blocks)

        return IndexReport(
            items_indexed=count,
            indexes_rebuilt=4,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    # ═══════════════════════════════════════════════════════════
    # BATCH
    # ═══════════════════════════════════════════════════════════

    async def batch(self, operations: Iterable[BatchOperation | dict[str, Any]]) -> BatchResult:
        """Apply create/update/delete operations without stopping at the first failure."""

        async def _create(op: BatchOperation) -> KnowledgeBlock:
            return await self.create(op.data)

        async def _update(op: BatchOperation) -> KnowledgeBlock:
            return await self.update(require_id(op), op.data)

        async def _delete(op: BatchOperation) -> dict[str, str]:
            block_id = require_id(op)
            await self.delete(block_id)
            return {"deleted": block_id}

        return await run_batch(
            operations,
            {
                BatchOperationType.CREATE: _create,
                BatchOperationType.UPDATE: _update,
                BatchOperationType.DELETE: _delete,
            },
            "knowledge_blocks",
        )
