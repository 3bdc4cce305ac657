"""
In-memory relation store.

Relations are typed, weighted edges between opaque item ids. The store
keeps one relation per ``(source_id, target_id, type)``; creating a
duplicate updates the strength instead of inserting. Lifecycle events are
published to the optional ``EventBus`` after each critical section.
"""

import asyncio
import time
from collections import Counter, defaultdict, deque
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from hinata.config import RelationStoreConfig
from hinata.core.batch import require_id, run_batch
from hinata.core.events import EventBus
from hinata.core.relation_store.strategies import (
    CeilingClusterEstimator,
    ClusterEstimator,
    DerivationStrategy,
    NoDerivation,
    TransitiveDerivation,
)
from hinata.core.validation import validate_model
from hinata.models.events import (
    RelationCreated,
    RelationDeleted,
    RelationsCleanedUp,
    RelationStrengthUpdated,
    StoreEvent,
)
from hinata.models.query import BatchOperation, BatchOperationType, BatchResult
from hinata.models.relation import (
    CreatedBy,
    GraphEdge,
    GraphNode,
    RelatedItem,
    Relation,
    RelationGraph,
    RelationMetadata,
    RelationQuery,
    RelationStats,
    RelationType,
)
from hinata.models.stats import IndexReport
from hinata.utils.exceptions import (
    ConfigurationError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from hinata.utils.logger import get_logger
from hinata.utils.timeutils import utc_now

logger = get_logger(__name__)

SORT_KEYS = {
    "strength": lambda r: r.strength,
    "created": lambda r: r.created_at,
    "updated": lambda r: r.updated_at,
    "accessed": lambda r: r.last_accessed,
}


def build_derivation_strategy(config: RelationStoreConfig) -> DerivationStrategy:
    """Derivation strategy named by ``config.derivation_strategy``."""
    if config.derivation_strategy == "none":
        return NoDerivation()
    if config.derivation_strategy == "transitive":
        return TransitiveDerivation(
            max_depth=config.max_derivation_depth, decay=config.derivation_decay
        )
    raise ConfigurationError(
        f"Unknown derivation strategy: {config.derivation_strategy}",
        context={"allowed": ["none", "transitive"]},
    )


def _coerce_type(value: RelationType | str) -> RelationType:
    try:
        return RelationType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown relation type: {value}") from e


class RelationStore:
    """Typed relation graph with derivation, traversal and recommendations."""

    def __init__(
        self,
        config: RelationStoreConfig | None = None,
        event_bus: EventBus | None = None,
        derivation: DerivationStrategy | None = None,
        cluster_estimator: ClusterEstimator | None = None,
    ):
        """
        Initialize the relation store.

        Args:
            config: TTL, derivation and decay settings
            event_bus: Receives lifecycle events (optional)
            derivation: Overrides the strategy named in ``config``
            cluster_estimator: Overrides the ``ceil(n/10)`` default
        """
        self.config = config or RelationStoreConfig()
        self.event_bus = event_bus
        self.derivation = derivation or build_derivation_strategy(self.config)
        self.cluster_estimator = cluster_estimator or CeilingClusterEstimator()

        self._relations: dict[str, Relation] = {}
        self._by_key: dict[tuple[str, str, RelationType], str] = {}
        self._by_source: dict[str, set[str]] = defaultdict(set)
        self._by_target: dict[str, set[str]] = defaultdict(set)
        self._by_type: dict[RelationType, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        logger.info(
            f"RelationStore initialized (derivation={type(self.derivation).__name__})"
        )

    def __len__(self) -> int:
        return len(self._relations)

    async def _publish(self, events: list[StoreEvent]) -> None:
        if self.event_bus is None:
            return
        for event in events:
            await self.event_bus.publish(event)

    # ═══════════════════════════════════════════════════════════
    # INDEX MAINTENANCE (callers hold the lock)
    # ═══════════════════════════════════════════════════════════

    def _index(self, relation: Relation) -> None:
        self._relations[relation.id] = relation
        self._by_key[relation.key] = relation.id
        self._by_source[relation.source_id].add(relation.id)
        self._by_target[relation.target_id].add(relation.id)
        self._by_type[relation.type].add(relation.id)

    def _remove(self, relation: Relation) -> None:
        del self._relations[relation.id]
        self._by_key.pop(relation.key, None)
        for index, key in (
            (self._by_source, relation.source_id),
            (self._by_target, relation.target_id),
            (self._by_type, relation.type),
        ):
            bucket = index.get(key)
            if bucket is not None:
                bucket.discard(relation.id)
                if not bucket:
                    del index[key]

    def _outgoing(self, item_id: str) -> list[Relation]:
        return [self._relations[rid] for rid in self._by_source.get(item_id, ())]

    def _incoming(self, item_id: str) -> list[Relation]:
        return [self._relations[rid] for rid in self._by_target.get(item_id, ())]

    def _upsert(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType,
        strength: float | None,
        bidirectional: bool,
        metadata: RelationMetadata,
        events: list[StoreEvent],
    ) -> Relation:
        existing_id = self._by_key.get((source_id, target_id, relation_type))
        if existing_id is not None:
            relation = self._relations[existing_id]
            if strength is not None and strength != relation.strength:
                events.append(
                    RelationStrengthUpdated(
                        relation_id=relation.id,
                        old_strength=relation.strength,
                        new_strength=strength,
                    )
                )
                relation.strength = strength
            relation.updated_at = utc_now()
            return relation

        fields: dict[str, Any] = {
            "source_id": source_id,
            "target_id": target_id,
            "type": relation_type,
            "bidirectional": bidirectional,
            "metadata": metadata,
        }
        if strength is not None:
            fields["strength"] = strength
        relation = Relation(**fields)
        self._index(relation)
        events.append(
            RelationCreated(
                relation_id=relation.id,
                source_id=source_id,
                target_id=target_id,
                type=relation_type,
                strength=relation.strength,
                derived=relation_type == RelationType.DERIVED,
            )
        )
        return relation

    # ═══════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════

    async def create_relation(
        self,
        source_id: str,
        target_id: str,
        type: RelationType | str,
        strength: float | None = None,
        bidirectional: bool = False,
        metadata: RelationMetadata | dict[str, Any] | None = None,
    ) -> str:
        """
        Create a relation, or update the strength of the existing one.

        Args:
            source_id: Source item id
            target_id: Target item id
            type: Relation type
            strength: Weight in [0, 1] (default 0.5 for new relations)
            bidirectional: Whether the relation holds in both directions
            metadata: Provenance (created_by, confidence, context, properties)

        Returns:
            Id of the created or updated relation

        Raises:
            ConsistencyError: If source and target are the same item
            ValidationError: If the strength is outside [0, 1] or the type/metadata is invalid
        """
        relation_type = _coerce_type(type)
        if not source_id or not target_id:
            raise ValidationError("source_id and target_id are required")
        if source_id == target_id:
            raise ConsistencyError(
                "Self-referencing relations are not allowed", context={"item_id": source_id}
            )
        if strength is not None and not 0.0 <= strength <= 1.0:
            raise ValidationError(
                f"Relation strength must be within [0, 1], got {strength}",
                context={"strength": strength},
            )
        meta = validate_model(RelationMetadata, metadata or {}, "relation metadata")

        events: list[StoreEvent] = []
        async with self._lock:
            relation = self._upsert(
                source_id, target_id, relation_type, strength, bidirectional, meta, events
            )
            created = bool(events) and isinstance(events[-1], RelationCreated)
            if created and self.config.enable_derivation and relation_type != RelationType.DERIVED:
                self._apply_derivation(relation, events)

        logger.info(
            "Relation {}: {} -[{}]-> {}",
            "created" if created else "updated",
            source_id,
            relation_type.value,
            target_id,
            extra={"relation_id": relation.id, "strength": relation.strength},
        )
        await self._publish(events)
        return relation.id

    def _apply_derivation(self, relation: Relation, events: list[StoreEvent]) -> None:
        for proposal in self.derivation.derive(relation, self._outgoing, self._incoming):
            self._upsert(
                proposal.source_id,
                proposal.target_id,
                RelationType.DERIVED,
                proposal.strength,
                False,
                RelationMetadata(
                    created_by=CreatedBy.SYSTEM,
                    confidence=proposal.strength,
                    context=f"derived from {relation.id}",
                    properties={"depth": proposal.depth, "derived_from": proposal.derived_from},
                ),
                events,
            )

    async def get_relation(self, relation_id: str) -> Relation | None:
        """Get a relation by id and record the access, or None."""
        async with self._lock:
            relation = self._relations.get(relation_id)
            if relation is None:
                return None
            relation.access_count += 1
            relation.last_accessed = utc_now()
            return relation.model_copy(deep=True)

    async def get_item_relations(self, item_id: str, include_incoming: bool = True) -> list[Relation]:
        """
        Relations touching an item, strongest first.

        Bidirectional relations count as outgoing from both ends.
        """
        async with self._lock:
            relations = {r.id: r for r in self._outgoing(item_id)}
            for relation in self._incoming(item_id):
                if include_incoming or relation.bidirectional:
                    relations[relation.id] = relation
            result = [r.model_copy(deep=True) for r in relations.values()]
        result.sort(key=lambda r: r.strength, reverse=True)
        return result

    async def query_relations(self, query: RelationQuery | dict[str, Any] | None = None) -> list[Relation]:
        """
        Filter, sort and paginate relations.

        ``source_ids`` / ``target_ids`` narrow the candidates through the
        indexes before the remaining filters run.
        """
        if query is None:
            query = RelationQuery()
        elif not isinstance(query, RelationQuery):
            query = validate_model(RelationQuery, query, "relation query")

        async with self._lock:
            candidate_ids: set[str] | None = None
            if query.source_ids is not None:
                candidate_ids = {rid for sid in query.source_ids for rid in self._by_source.get(sid, ())}
            if query.target_ids is not None:
                by_target = {rid for tid in query.target_ids for rid in self._by_target.get(tid, ())}
                candidate_ids = by_target if candidate_ids is None else candidate_ids & by_target
            if candidate_ids is None:
                candidates = list(self._relations.values())
            else:
                candidates = [self._relations[rid] for rid in candidate_ids]

            matched = [r for r in candidates if self._matches(r, query)]
            matched.sort(key=SORT_KEYS[query.sort_by], reverse=query.sort_order == "desc")
            end = None if query.limit is None else query.offset + query.limit
            return [r.model_copy(deep=True) for r in matched[query.offset : end]]

    @staticmethod
    def _matches(relation: Relation, query: RelationQuery) -> bool:
        if query.types and relation.type not in query.types:
            return False
        if query.min_strength is not None and relation.strength < query.min_strength:
            return False
        if query.max_strength is not None and relation.strength > query.max_strength:
            return False
        if not query.include_bidirectional and relation.bidirectional:
            return False
        if query.date_range and not query.date_range.contains(relation.created_at):
            return False
        return True

    async def update_relation_strength(self, relation_id: str, strength: float) -> Relation:
        """
        Set a relation's strength, clamped to [0, 1].

        Raises:
            NotFoundError: If the relation doesn't exist
        """
        clamped = min(1.0, max(0.0, strength))
        async with self._lock:
            relation = self._relations.get(relation_id)
            if relation is None:
                raise NotFoundError(
                    f"Relation not found: {relation_id}", context={"relation_id": relation_id}
                )
            event = RelationStrengthUpdated(
                relation_id=relation_id, old_strength=relation.strength, new_strength=clamped
            )
            relation.strength = clamped
            relation.updated_at = utc_now()
            result = relation.model_copy(deep=True)

        await self._publish([event])
        return result

    async def delete_relation(self, relation_id: str) -> None:
        """
        Delete a relation.

        Raises:
            NotFoundError: If the relation doesn't exist
        """
        async with self._lock:
            relation = self._relations.get(relation_id)
            if relation is None:
                raise NotFoundError(
                    f"Relation not found: {relation_id}", context={"relation_id": relation_id}
                )
            self._remove(relation)

        logger.debug("Relation deleted: {}", relation_id, extra={"relation_id": relation_id})
        await self._publish(
            [
                RelationDeleted(
                    relation_id=relation_id,
                    source_id=relation.source_id,
                    target_id=relation.target_id,
                )
            ]
        )

    async def delete_item_relations(self, item_id: str) -> int:
        """Delete every relation touching an item. Returns the number removed."""
        async with self._lock:
            relations = {r.id: r for r in self._outgoing(item_id) + self._incoming(item_id)}
            for relation in relations.values():
                self._remove(relation)

        logger.info(
            "Deleted {} relations of {}",
            len(relations),
            item_id,
            extra={"item_id": item_id, "count": len(relations)},
        )
        await self._publish(
            [
                RelationDeleted(relation_id=r.id, source_id=r.source_id, target_id=r.target_id)
                for r in relations.values()
            ]
        )
        return len(relations)

    # ═══════════════════════════════════════════════════════════
    # GRAPH
    # ═══════════════════════════════════════════════════════════

    async def build_graph(
        self,
        center_ids: list[str],
        max_depth: int = 2,
        min_strength: float = 0.1,
    ) -> RelationGraph:
        """
        Breadth-first walk from every center id.

        Each item is visited at most once. The walk follows relations in
        both directions but only those with ``strength >= min_strength``,
        and stops ``max_depth`` hops from the nearest center.

        Args:
            center_ids: Items to start from (depth 0)
            max_depth: Maximum hops
            min_strength: Minimum strength of followed edges

        Returns:
            Nodes, edges between visited nodes, density and cluster estimate
        """
        async with self._lock:
            depths: dict[str, int] = {}
            queue: deque[str] = deque()
            for center in center_ids:
                if center not in depths:
                    depths[center] = 0
                    queue.append(center)

            edges: dict[str, Relation] = {}
            while queue:
                item_id = queue.popleft()
                depth = depths[item_id]
                for relation in self._outgoing(item_id) + self._incoming(item_id):
                    if relation.strength < min_strength:
                        continue
                    neighbor = relation.target_id if relation.source_id == item_id else relation.source_id
                    if neighbor not in depths:
                        if depth >= max_depth:
                            continue
                        depths[neighbor] = depth + 1
                        queue.append(neighbor)
                    edges[relation.id] = relation

        graph_edges = [
            GraphEdge(
                id=r.id,
                source_id=r.source_id,
                target_id=r.target_id,
                type=r.type,
                strength=r.strength,
                bidirectional=r.bidirectional,
            )
            for r in edges.values()
            if r.source_id in depths and r.target_id in depths
        ]
        degree = Counter()
        for edge in graph_edges:
            degree[edge.source_id] += 1
            degree[edge.target_id] += 1
        nodes = [
            GraphNode(id=item_id, depth=depth, relation_count=degree[item_id])
            for item_id, depth in depths.items()
        ]

        n = len(nodes)
        density = len(graph_edges) / (n * (n - 1)) if n > 1 else 0.0
        return RelationGraph(
            center_ids=list(center_ids),
            nodes=nodes,
            edges=graph_edges,
            density=density,
            clusters=self.cluster_estimator.estimate(nodes, graph_edges),
        )

    async def recommend_related(
        self,
        item_id: str,
        limit: int = 10,
        min_strength: float = 0.3,
        exclude_ids: Iterable[str] | None = None,
    ) -> list[RelatedItem]:
        """
        Items related to ``item_id``, best first.

        Direct relations score their raw strength; second-degree items
        score ``s1 * s2 * decay`` (decay 0.7 by default). Only relations
        with ``strength >= min_strength`` are followed. The item itself and
        ``exclude_ids`` are never returned.
        """
        excluded = set(exclude_ids or ()) | {item_id}
        decay = self.config.second_degree_decay
        best: dict[str, RelatedItem] = {}

        def offer(candidate: RelatedItem) -> None:
            if candidate.item_id in excluded:
                return
            current = best.get(candidate.item_id)
            if current is None or candidate.score > current.score:
                best[candidate.item_id] = candidate

        def neighbors(source: str) -> list[tuple[str, Relation]]:
            found = [(r.target_id, r) for r in self._outgoing(source)]
            found += [(r.source_id, r) for r in self._incoming(source) if r.bidirectional]
            return [(other, r) for other, r in found if r.strength >= min_strength]

        async with self._lock:
            for neighbor, first in neighbors(item_id):
                offer(RelatedItem(item_id=neighbor, score=first.strength, relation_type=first.type))
                for second_neighbor, second in neighbors(neighbor):
                    offer(
                        RelatedItem(
                            item_id=second_neighbor,
                            score=first.strength * second.strength * decay,
                            relation_type=second.type,
                            depth=2,
                            via=neighbor,
                        )
                    )

        ranked = sorted(best.values(), key=lambda r: (-r.score, r.item_id))
        return ranked[:limit]

    # ═══════════════════════════════════════════════════════════
    # STATISTICS & MAINTENANCE
    # ═══════════════════════════════════════════════════════════

    async def get_stats(self) -> RelationStats:
        """Type distribution, strength buckets and averages."""
        async with self._lock:
            relations = list(self._relations.values())
        if not relations:
            return RelationStats()

        buckets = {"weak": 0, "moderate": 0, "strong": 0}
        for relation in relations:
            if relation.strength < 0.3:
                buckets["weak"] += 1
            elif relation.strength < 0.7:
                buckets["moderate"] += 1
            else:
                buckets["strong"] += 1

        return RelationStats(
            total_relations=len(relations),
            type_distribution=dict(Counter(r.type.value for r in relations)),
            strength_distribution=buckets,
            average_strength=sum(r.strength for r in relations) / len(relations),
            bidirectional_count=sum(1 for r in relations if r.bidirectional),
            system_created_count=sum(
                1 for r in relations if r.metadata.created_by == CreatedBy.SYSTEM
            ),
        )

    def _is_expired(self, relation: Relation, cutoff) -> bool:
        return relation.metadata.created_by == CreatedBy.SYSTEM and relation.last_accessed < cutoff

    async def cleanup(self) -> int:
        """
        Remove system-created relations not accessed within the TTL.

        User- and AI-created relations never expire. Candidates are
        snapshotted first, then removed one at a time so the lock is held
        only per removal.

        Returns:
            Number of relations removed
        """
        cutoff = utc_now() - timedelta(days=self.config.relation_ttl_days)
        async with self._lock:
            candidates = [r.id for r in self._relations.values() if self._is_expired(r, cutoff)]

        removed = 0
        for relation_id in candidates:
            async with self._lock:
                relation = self._relations.get(relation_id)
                # Re-check: the relation may have been touched since the snapshot
                if relation is None or not self._is_expired(relation, cutoff):
                    continue
                self._remove(relation)
                removed += 1
            await asyncio.sleep(0)

        logger.info("Relation cleanup removed {} relations", removed, extra={"removed": removed})
        await self._publish([RelationsCleanedUp(removed=removed)])
        return removed

    async def rebuild_indexes(self) -> IndexReport:
        """Rebuild the key, source, target and type indexes from the primary map."""
        started = time.perf_counter()
        async with self._lock:
            relations = list(self._relations.values())
            self._relations.clear()
            self._by_key.clear()
            self._by_source.clear()
            self._by_target.clear()
            self._by_type.clear()
            for relation in relations:
                self._index(relation)

        return IndexReport(
            items_indexed=len(relations),
            indexes_rebuilt=4,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def close(self) -> None:
        """Drop all relations and indexes."""
        async with self._lock:
            count = len(self._relations)
            self._relations.clear()
            self._by_key.clear()
            self._by_source.clear()
            self._by_target.clear()
            self._by_type.clear()
        logger.info(f"RelationStore closed ({count} relations dropped)")

    # ═══════════════════════════════════════════════════════════
    # BATCH
    # ═══════════════════════════════════════════════════════════

    async def batch(self, operations: Iterable[BatchOperation | dict[str, Any]]) -> BatchResult:
        """
        Apply create/update/delete operations without stopping at the first failure.

        CREATE takes the ``create_relation`` arguments in ``data``; UPDATE
        takes ``{"strength": ...}``.
        """

        async def _create(op: BatchOperation) -> dict[str, str]:
            data = op.data
            if "source_id" not in data or "target_id" not in data or "type" not in data:
                raise ValidationError("CREATE requires source_id, target_id and type")
            relation_id = await self.create_relation(
                data["source_id"],
                data["target_id"],
                data["type"],
                strength=data.get("strength"),
                bidirectional=bool(data.get("bidirectional", False)),
                metadata=data.get("metadata"),
            )
            return {"id": relation_id}

        async def _update(op: BatchOperation) -> Relation:
            if "strength" not in op.data:
                raise ValidationError("UPDATE requires a strength")
            return await self.update_relation_strength(require_id(op), float(op.data["strength"]))

        async def _delete(op: BatchOperation) -> dict[str, str]:
            relation_id = require_id(op)
            await self.delete_relation(relation_id)
            return {"deleted": relation_id}

        return await run_batch(
            operations,
            {
                BatchOperationType.CREATE: _create,
                BatchOperationType.UPDATE: _update,
                BatchOperationType.DELETE: _delete,
            },
            "relations",
        )
