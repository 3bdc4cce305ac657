"""
In-memory packet store.

Stores validated capture packets and maintains five secondary indexes:

- by user id
- by capture source
- by hour bucket of the capture timestamp (``YYYY-MM-DD-HH``, UTC)
- by free-text token (lower-cased, longer than two characters)
- by tag (lower-cased)

Every index is a ``key -> set[packet_id]`` map guarded, together with the
primary map, by a single ``asyncio.Lock``. Callers always receive deep
copies, so mutating a returned packet never touches stored state.
"""

import asyncio
import statistics
import time
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from hinata.config import PacketStoreConfig
from hinata.core.batch import require_id, run_batch
from hinata.core.validation import as_update_dict, deep_merge, validate_model
from hinata.models.packet import CaptureSource, Packet
from hinata.models.query import (
    AttentionStats,
    BatchOperation,
    BatchOperationType,
    BatchResult,
    PacketAggregations,
    PacketSearchQuery,
    Pagination,
    SearchResult,
    TimeRange,
)
from hinata.models.stats import (
    AttentionTrendPoint,
    BatchItemError,
    DistributionEntry,
    IndexReport,
    PacketBatchDeleteResult,
    PacketBatchStoreResult,
    PacketStatistics,
    SimilarPacket,
    StorageSize,
    TagCount,
)
from hinata.utils.exceptions import (
    DuplicateError,
    HiNATAError,
    NotFoundError,
    ValidationError,
)
from hinata.utils.logger import get_logger
from hinata.utils.text import index_tokens, jaccard, matches_all_terms, word_set
from hinata.utils.timeutils import ensure_utc, hour_bucket, utc_now

logger = get_logger(__name__)

SORT_FIELDS = {
    "capture_timestamp": lambda p: p.metadata.capture_timestamp,
    "attention_score": lambda p: p.attention_score,
    "highlight": lambda p: p.payload.highlight.lower(),
    "created_at": lambda p: p.created_at,
}

# Weights of the lexical similarity heuristic, summing to 1.0
SIMILARITY_WEIGHTS = {
    "content": 0.4,
    "tags": 0.3,
    "capture_source": 0.1,
    "user_action": 0.1,
    "at": 0.1,
}

INDEX_COUNT = 5


class PacketStore:
    """
    Packet storage with secondary indexes, search and statistics.

    Validation always happens before the first mutation, so a failing
    call leaves the store untouched.
    """

    def __init__(self, config: PacketStoreConfig | None = None):
        """
        Initialize the packet store.

        Args:
            config: Paging and similarity defaults
        """
        self.config = config or PacketStoreConfig()
        self._packets: dict[str, Packet] = {}
        self._by_user: dict[str, set[str]] = defaultdict(set)
        self._by_source: dict[CaptureSource, set[str]] = defaultdict(set)
        self._by_time: dict[str, set[str]] = defaultdict(set)
        self._by_text: dict[str, set[str]] = defaultdict(set)
        self._by_tag: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        logger.info("PacketStore initialized")

    def __len__(self) -> int:
        return len(self._packets)

    # ═══════════════════════════════════════════════════════════
    # INDEX MAINTENANCE (callers hold the lock)
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _index_keys(packet: Packet) -> list[tuple[str, Iterable[Any]]]:
        return [
            ("_by_user", [packet.user_id]),
            ("_by_source", [packet.metadata.capture_source]),
            ("_by_time", [hour_bucket(packet.metadata.capture_timestamp)]),
            ("_by_text", index_tokens(packet.text_blob())),
            ("_by_tag", {tag.lower() for tag in packet.payload.tag}),
        ]

    def _index(self, packet: Packet) -> None:
        for attr, keys in self._index_keys(packet):
            index = getattr(self, attr)
            for key in keys:
                index[key].add(packet.id)

    def _unindex(self, packet: Packet) -> None:
        for attr, keys in self._index_keys(packet):
            index = getattr(self, attr)
            for key in keys:
                bucket = index.get(key)
                if bucket is None:
                    continue
                bucket.discard(packet.id)
                if not bucket:
                    del index[key]

    def _clear_indexes(self) -> None:
        for index in (self._by_user, self._by_source, self._by_time, self._by_text, self._by_tag):
            index.clear()

    def _lookup(self, index: dict, key: Any) -> list[Packet]:
        # .get avoids materializing empty defaultdict buckets on read
        return [self._packets[pid] for pid in index.get(key, ())]

    # ═══════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════

    async def store(self, packet: Packet | dict[str, Any]) -> Packet:
        """
        Validate and insert a packet.

        Args:
            packet: Packet model or mapping with ``metadata`` and ``payload``

        Returns:
            The stored packet with ``created_at == updated_at``

        Raises:
            ValidationError: If required HiNATA fields are missing or malformed
            DuplicateError: If the packet id is already stored
        """
        validated = validate_model(Packet, packet, "packet")

        async with self._lock:
            if validated.id in self._packets:
                raise DuplicateError(
                    f"Packet already exists: {validated.id}",
                    context={"packet_id": validated.id},
                )
            now = utc_now()
            validated.created_at = now
            validated.updated_at = now
            self._packets[validated.id] = validated
            self._index(validated)

        logger.info(
            "Packet stored: {}",
            validated.id,
            extra={"packet_id": validated.id, "user_id": validated.user_id},
        )
        return validated.model_copy(deep=True)

    async def get_by_id(self, packet_id: str) -> Packet | None:
        """Get a packet by id, or None."""
        packet = self._packets.get(packet_id)
        return packet.model_copy(deep=True) if packet else None

    async def get_by_ids(self, packet_ids: Iterable[str]) -> list[Packet]:
        """Get the packets that exist among ``packet_ids``, in input order."""
        return [
            self._packets[pid].model_copy(deep=True) for pid in packet_ids if pid in self._packets
        ]

    async def update(self, packet_id: str, updates: dict[str, Any]) -> Packet:
        """
        Merge a partial update into a stored packet.

        ``metadata`` and ``payload`` are merged field by field, recursively.
        The merged packet is re-validated before anything is written.

        Args:
            packet_id: Packet to update
            updates: Partial packet, e.g. ``{"payload": {"note": "..."}}``

        Returns:
            The updated packet

        Raises:
            NotFoundError: If the packet doesn't exist
            ValidationError: If the merged packet is invalid or the id changes
        """
        updates = as_update_dict(updates)
        metadata = updates.get("metadata", {})
        if not isinstance(metadata, Mapping):
            raise ValidationError(
                f"Packet metadata update must be a mapping, got {type(metadata).__name__}",
                context={"packet_id": packet_id},
            )
        new_id = metadata.get("packet_id")
        if new_id is not None and new_id != packet_id:
            raise ValidationError(
                "packet_id cannot be changed", context={"packet_id": packet_id}
            )

        async with self._lock:
            existing = self._packets.get(packet_id)
            if existing is None:
                raise NotFoundError(f"Packet not found: {packet_id}", context={"packet_id": packet_id})

            merged = deep_merge(existing.model_dump(), updates)
            merged["created_at"] = existing.created_at
            updated = validate_model(Packet, merged, "packet")
            updated.updated_at = utc_now()

            self._unindex(existing)
            self._packets[packet_id] = updated
            self._index(updated)

        logger.info("Packet updated: {}", packet_id, extra={"packet_id": packet_id})
        return updated.model_copy(deep=True)

    async def delete(self, packet_id: str) -> None:
        """
        Hard-delete a packet and prune it from every index.

        Raises:
            NotFoundError: If the packet doesn't exist
        """
        async with self._lock:
            packet = self._packets.pop(packet_id, None)
            if packet is None:
                raise NotFoundError(f"Packet not found: {packet_id}", context={"packet_id": packet_id})
            self._unindex(packet)

        logger.info("Packet deleted: {}", packet_id, extra={"packet_id": packet_id})

    # ═══════════════════════════════════════════════════════════
    # INDEXED READS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _page(packets: list[Packet], limit: int | None, offset: int) -> list[Packet]:
        end = None if limit is None else offset + limit
        return [p.model_copy(deep=True) for p in packets[offset:end]]

    async def get_by_user(
        self, user_id: str, limit: int | None = None, offset: int = 0
    ) -> list[Packet]:
        """A user's packets, newest capture first."""
        async with self._lock:
            packets = self._lookup(self._by_user, user_id)
        packets.sort(key=lambda p: p.metadata.capture_timestamp, reverse=True)
        return self._page(packets, limit or self.config.user_page_size, offset)

    async def get_by_source(
        self, source: CaptureSource | str, limit: int | None = None, offset: int = 0
    ) -> list[Packet]:
        """Packets from one capture source, newest capture first."""
        try:
            source = CaptureSource(source)
        except ValueError as e:
            raise ValidationError(f"Unknown capture source: {source}") from e
        async with self._lock:
            packets = self._lookup(self._by_source, source)
        packets.sort(key=lambda p: p.metadata.capture_timestamp, reverse=True)
        return self._page(packets, limit or self.config.user_page_size, offset)

    async def get_by_time_range(self, start: datetime, end: datetime) -> list[Packet]:
        """
        Packets captured in ``[start, end]``, oldest first.

        Hour-bucket keys are fixed width, so the candidate buckets are a
        lexicographic range over the time index.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if start > end:
            raise ValidationError("start must not be after end")
        first, last = hour_bucket(start), hour_bucket(end)

        async with self._lock:
            candidates = [
                self._packets[pid]
                for key, ids in self._by_time.items()
                if first <= key <= last
                for pid in ids
            ]

        packets = [p for p in candidates if start <= p.metadata.capture_timestamp <= end]
        packets.sort(key=lambda p: p.metadata.capture_timestamp)
        return [p.model_copy(deep=True) for p in packets]

    async def get_by_tag(self, tag: str) -> list[Packet]:
        """Packets carrying ``tag`` (case-insensitive), newest capture first."""
        async with self._lock:
            packets = self._lookup(self._by_tag, tag.lower())
        packets.sort(key=lambda p: p.metadata.capture_timestamp, reverse=True)
        return [p.model_copy(deep=True) for p in packets]

    async def get_by_keyword(self, word: str) -> list[Packet]:
        """Packets whose text contains the token ``word`` (case-insensitive)."""
        async with self._lock:
            packets = self._lookup(self._by_text, word.lower())
        packets.sort(key=lambda p: p.metadata.capture_timestamp, reverse=True)
        return [p.model_copy(deep=True) for p in packets]

    # ═══════════════════════════════════════════════════════════
    # SEARCH
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _matches(packet: Packet, query: PacketSearchQuery) -> bool:
        filters = query.filters
        meta, payload = packet.metadata, packet.payload

        if filters.user_id and payload.user_id != filters.user_id:
            return False
        if filters.tags:
            wanted = {t.lower() for t in filters.tags}
            if not wanted & {t.lower() for t in payload.tag}:
                return False
        if filters.access_level and payload.access not in filters.access_level:
            return False
        if filters.date_range and not filters.date_range.contains(meta.capture_timestamp):
            return False

        if query.sources and meta.capture_source not in query.sources:
            return False
        if query.user_actions and meta.user_action not in query.user_actions:
            return False
        if query.attention_score_range:
            score_range = query.attention_score_range
            if score_range.min is not None and packet.attention_score < score_range.min:
                return False
            if score_range.max is not None and packet.attention_score > score_range.max:
                return False
        if query.device_types and packet.device_type not in query.device_types:
            return False
        if query.has_attachments is not None and bool(payload.attachments) != query.has_attachments:
            return False

        return matches_all_terms(packet.text_blob(), query.query)

    @staticmethod
    def _aggregate(packets: list[Packet]) -> PacketAggregations:
        aggregations = PacketAggregations(
            sources=dict(Counter(p.metadata.capture_source.value for p in packets)),
            user_actions=dict(Counter(p.metadata.user_action.value for p in packets)),
        )
        if packets:
            scores = sorted(p.attention_score for p in packets)
            aggregations.attention = AttentionStats(
                min=scores[0],
                max=scores[-1],
                average=sum(scores) / len(scores),
                median=scores[len(scores) // 2],
            )
        return aggregations

    async def search(self, query: PacketSearchQuery | dict[str, Any]) -> SearchResult[Packet]:
        """
        Filter, match, sort and paginate packets.

        Aggregations are computed over the filtered set before pagination.

        Args:
            query: Search query (model or mapping)

        Returns:
            One page of packets with totals and aggregations

        Raises:
            ValidationError: If the query is malformed or the sort field unknown
        """
        started = time.perf_counter()
        if not isinstance(query, PacketSearchQuery):
            query = validate_model(PacketSearchQuery, query, "packet search query")

        sort = query.sort
        sort_field = sort.field if sort else "capture_timestamp"
        if sort_field not in SORT_FIELDS:
            raise ValidationError(
                f"Unknown sort field: {sort_field}", context={"allowed": sorted(SORT_FIELDS)}
            )

        async with self._lock:
            if query.filters.user_id:
                candidates = self._lookup(self._by_user, query.filters.user_id)
            else:
                candidates = list(self._packets.values())
            matched = [p for p in candidates if self._matches(p, query)]

        aggregations = self._aggregate(matched)
        matched.sort(key=SORT_FIELDS[sort_field], reverse=(sort.order if sort else "desc") == "desc")

        pagination = query.pagination
        if "limit" not in pagination.model_fields_set:
            pagination = Pagination(page=pagination.page, limit=self.config.default_page_size)
        items = self._page(matched, pagination.limit, pagination.offset)
        total = len(matched)

        elapsed = (time.perf_counter() - started) * 1000
        logger.debug(
            "Packet search returned {}/{}",
            len(items),
            total,
            extra={"query": query.query, "total": total, "execution_time_ms": elapsed},
        )
        return SearchResult[Packet](
            items=items,
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            has_more=pagination.offset + len(items) < total,
            query=query.query,
            execution_time_ms=elapsed,
            aggregations=aggregations,
        )

    # ═══════════════════════════════════════════════════════════
    # SIMILARITY
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def similarity(a: Packet, b: Packet) -> tuple[float, list[str]]:
        """
        Lexical similarity of two packets in ``[0, 1]``.

        Returns:
            (score, names of the fields that matched)
        """
        matching: list[str] = []
        content = jaccard(word_set(a.text_blob()), word_set(b.text_blob()))
        tags_a = {t.lower() for t in a.payload.tag}
        tags_b = {t.lower() for t in b.payload.tag}
        tags = jaccard(tags_a, tags_b)

        score = SIMILARITY_WEIGHTS["content"] * content + SIMILARITY_WEIGHTS["tags"] * tags
        if a.payload.highlight.strip().lower() == b.payload.highlight.strip().lower():
            matching.append("highlight")
        if tags_a & tags_b:
            matching.append("tags")
        if a.metadata.capture_source == b.metadata.capture_source:
            score += SIMILARITY_WEIGHTS["capture_source"]
            matching.append("capture_source")
        if a.metadata.user_action == b.metadata.user_action:
            score += SIMILARITY_WEIGHTS["user_action"]
            matching.append("user_action")
        if a.payload.at == b.payload.at:
            score += SIMILARITY_WEIGHTS["at"]
            matching.append("at")
        return min(score, 1.0), matching

    async def get_similar_packets(
        self,
        packet_id: str,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[SimilarPacket]:
        """
        Packets scoring at least ``threshold`` against ``packet_id``.

        Args:
            packet_id: Reference packet
            threshold: Minimum similarity (default from config, 0.7)
            limit: Maximum results (default from config, 10)

        Returns:
            Matches sorted by similarity, highest first

        Raises:
            NotFoundError: If the reference packet doesn't exist
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold
        limit = self.config.similarity_limit if limit is None else limit

        async with self._lock:
            reference = self._packets.get(packet_id)
            if reference is None:
                raise NotFoundError(f"Packet not found: {packet_id}", context={"packet_id": packet_id})
            others = [p for pid, p in self._packets.items() if pid != packet_id]

        matches = []
        for other in others:
            score, fields = self.similarity(reference, other)
            if score >= threshold:
                matches.append(
                    SimilarPacket(
                        packet=other.model_copy(deep=True),
                        similarity=round(score, 6),
                        matching_fields=fields,
                    )
                )
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    # ═══════════════════════════════════════════════════════════
    # STATISTICS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _distribution(values: list[str]) -> dict[str, DistributionEntry]:
        total = len(values)
        return {
            key: DistributionEntry(count=count, percentage=round(count / total * 100, 2))
            for key, count in Counter(values).most_common()
        }

    @staticmethod
    def _storage_size(packets: Iterable[Packet]) -> StorageSize:
        total = sum(len(p.model_dump_json()) for p in packets)
        ratio = 0.7
        return StorageSize(
            total_bytes=total,
            estimated_compressed_bytes=int(total * ratio),
            compression_ratio=ratio,
        )

    async def get_statistics(self, user_id: str | None = None) -> PacketStatistics:
        """Totals and distributions, optionally for a single user."""
        async with self._lock:
            if user_id:
                packets = self._lookup(self._by_user, user_id)
            else:
                packets = list(self._packets.values())

        if not packets:
            return PacketStatistics()

        tag_counts = Counter(tag.lower() for p in packets for tag in p.payload.tag)
        daily = Counter(p.metadata.capture_timestamp.strftime("%Y-%m-%d") for p in packets)

        return PacketStatistics(
            total_packets=len(packets),
            total_users=len({p.user_id for p in packets}),
            average_attention_score=statistics.fmean(p.attention_score for p in packets),
            source_distribution=self._distribution(
                [p.metadata.capture_source.value for p in packets]
            ),
            action_distribution=self._distribution([p.metadata.user_action.value for p in packets]),
            device_distribution=self._distribution([p.device_type for p in packets]),
            daily_packet_counts=dict(sorted(daily.items())),
            top_tags=[
                TagCount(tag=tag, count=count)
                for tag, count in tag_counts.most_common(self.config.top_tags_limit)
            ],
            storage_size=self._storage_size(packets),
        )

    @staticmethod
    def _trend_bucket(value: datetime, granularity: str) -> str:
        if granularity == "hour":
            return value.strftime("%Y-%m-%d %H:00")
        if granularity == "week":
            year, week, _ = value.isocalendar()
            return f"{year}-W{week:02d}"
        if granularity == "month":
            return value.strftime("%Y-%m")
        return value.strftime("%Y-%m-%d")

    async def get_attention_trend(
        self, user_id: str, time_range: TimeRange | dict[str, Any]
    ) -> list[AttentionTrendPoint]:
        """
        Attention score per time bucket for one user.

        Args:
            user_id: Owner of the packets
            time_range: Window and granularity (hour, day, week, month)

        Returns:
            One point per non-empty bucket, ascending by bucket key
        """
        if not isinstance(time_range, TimeRange):
            time_range = validate_model(TimeRange, time_range, "time range")

        async with self._lock:
            packets = [
                p
                for p in self._lookup(self._by_user, user_id)
                if time_range.start <= p.metadata.capture_timestamp <= time_range.end
            ]

        buckets: dict[str, list[Packet]] = defaultdict(list)
        for packet in packets:
            key = self._trend_bucket(packet.metadata.capture_timestamp, time_range.granularity)
            buckets[key].append(packet)

        trend = []
        for key in sorted(buckets):
            group = buckets[key]
            scores = [p.attention_score for p in group]
            trend.append(
                AttentionTrendPoint(
                    bucket=key,
                    average_score=sum(scores) / len(scores),
                    peak_score=max(scores),
                    packet_count=len(group),
                    sources=dict(Counter(p.metadata.capture_source.value for p in group)),
                )
            )
        return trend

    # ═══════════════════════════════════════════════════════════
    # MAINTENANCE
    # ═══════════════════════════════════════════════════════════

    async def rebuild_index(self) -> IndexReport:
        """Drop and rebuild all five secondary indexes from the primary map."""
        started = time.perf_counter()
        async with self._lock:
            self._clear_indexes()
            for packet in self._packets.values():
                self._index(packet)
            count = len(self._packets)

        report = IndexReport(
            items_indexed=count,
            indexes_rebuilt=INDEX_COUNT,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.info("Packet indexes rebuilt for {} packets", count, extra={"packets": count})
        return report

    async def optimize_storage(self) -> IndexReport:
        """Rebuild indexes and report the storage footprint before and after."""
        async with self._lock:
            before = self._storage_size(self._packets.values()).total_bytes
        report = await self.rebuild_index()
        async with self._lock:
            after = self._storage_size(self._packets.values()).total_bytes
        report.size_before_bytes = before
        report.size_after_bytes = after
        return report

    # ═══════════════════════════════════════════════════════════
    # BATCH
    # ═══════════════════════════════════════════════════════════

    async def store_batch(self, packets: Iterable[Packet | dict[str, Any]]) -> PacketBatchStoreResult:
        """Store many packets; failures and duplicates are reported, not raised."""
        result = PacketBatchStoreResult()
        for packet in packets:
            try:
                stored = await self.store(packet)
                result.stored += 1
                result.stored_ids.append(stored.id)
            except DuplicateError as e:
                result.failed += 1
                result.duplicates.append(e.context.get("packet_id", ""))
                result.errors.append(
                    BatchItemError(id=e.context.get("packet_id"), error=e.message, code=e.code)
                )
            except HiNATAError as e:
                result.failed += 1
                result.errors.append(BatchItemError(error=e.message, code=e.code))
        logger.info(
            "Packet batch store: {} stored, {} failed",
            result.stored,
            result.failed,
            extra={"stored": result.stored, "failed": result.failed},
        )
        return result

    async def delete_batch(self, packet_ids: Iterable[str]) -> PacketBatchDeleteResult:
        """Delete many packets; unknown ids are reported in ``not_found``."""
        result = PacketBatchDeleteResult()
        for packet_id in packet_ids:
            try:
                await self.delete(packet_id)
                result.deleted += 1
            except NotFoundError:
                result.not_found.append(packet_id)
            except HiNATAError as e:
                result.errors.append(BatchItemError(id=packet_id, error=e.message, code=e.code))
        return result

    async def batch(self, operations: Iterable[BatchOperation | dict[str, Any]]) -> BatchResult:
        """Apply create/update/delete operations without stopping at the first failure."""

        async def _create(op: BatchOperation) -> Packet:
            return await self.store(op.data)

        async def _update(op: BatchOperation) -> Packet:
            return await self.update(require_id(op), op.data)

        async def _delete(op: BatchOperation) -> dict[str, str]:
            packet_id = require_id(op)
            await self.delete(packet_id)
            return {"deleted": packet_id}

        return await run_batch(
            operations,
            {
                BatchOperationType.CREATE: _create,
                BatchOperationType.UPDATE: _update,
                BatchOperationType.DELETE: _delete,
            },
            "packets",
        )

