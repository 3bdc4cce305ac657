"""
Tests for RelationStore.

Tests cover:
1. Create with upsert semantics and validation
2. Reads: by id (access tracking), by item, queries
3. Strength updates and deletion
4. Graph walks and related-item recommendations
5. Statistics, TTL cleanup and index rebuild
6. Event publication and batch operations
"""

from datetime import timedelta

import pytest

from hinata.config import RelationStoreConfig
from hinata.core.relation_store import RelationStore, build_derivation_strategy
from hinata.models import CreatedBy, RelationType
from hinata.models.events import (
    RelationCreated,
    RelationDeleted,
    RelationsCleanedUp,
    RelationStrengthUpdated,
)
from hinata.utils.exceptions import (
    ConfigurationError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from hinata.utils.timeutils import utc_now


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelationCreate:
    """Tests for create_relation."""

    async def test_create(self, relation_store):
        """Test creating a relation with defaults."""
        relation_id = await relation_store.create_relation("a", "b", RelationType.USER_DEFINED)

        relation = await relation_store.get_relation(relation_id)

        assert relation_id.startswith("rel_")
        assert relation.strength == 0.5
        assert relation.bidirectional is False
        assert relation.metadata.created_by == CreatedBy.USER

    async def test_ids_with_braces(self, relation_store, event_bus, log_messages):
        """Test brace characters in item ids are stored and logged verbatim."""
        relation_id = await relation_store.create_relation("note{0}", "b", "user_defined")

        removed = await relation_store.delete_item_relations("note{0}")

        assert removed == 1
        assert event_bus.events[0].relation_id == relation_id
        assert event_bus.events[0].source_id == "note{0}"
        assert any("note{0} -[user_defined]-> b" in m for m in log_messages)
        assert any("Deleted 1 relations of note{0}" in m for m in log_messages)

    async def test_duplicate_updates_strength(self, relation_store):
        """Test a second create on the same key updates instead of inserting."""
        first = await relation_store.create_relation("a", "b", "user_defined", strength=0.5)
        second = await relation_store.create_relation("a", "b", "user_defined", strength=0.9)

        relations = await relation_store.query_relations()

        assert first == second
        assert len(relations) == 1
        assert relations[0].strength == 0.9

    async def test_duplicate_without_strength_keeps_value(self, relation_store):
        """Test a duplicate without strength leaves the stored strength."""
        relation_id = await relation_store.create_relation("a", "b", "user_defined", strength=0.8)

        await relation_store.create_relation("a", "b", "user_defined")

        assert (await relation_store.get_relation(relation_id)).strength == 0.8

    async def test_same_pair_different_type(self, relation_store):
        """Test the uniqueness key includes the type."""
        await relation_store.create_relation("a", "b", "user_defined")
        await relation_store.create_relation("a", "b", "tag_association")

        assert len(relation_store) == 2

    async def test_self_loop(self, relation_store):
        """Test self-referencing relations raise ConsistencyError."""
        with pytest.raises(ConsistencyError):
            await relation_store.create_relation("a", "a", "user_defined")

    @pytest.mark.parametrize("strength", [-0.1, 1.5])
    async def test_strength_out_of_range(self, relation_store, strength):
        """Test strength outside [0, 1] raises ValidationError."""
        with pytest.raises(ValidationError):
            await relation_store.create_relation("a", "b", "user_defined", strength=strength)

    async def test_unknown_type(self, relation_store):
        """Test unknown relation type raises ValidationError."""
        with pytest.raises(ValidationError):
            await relation_store.create_relation("a", "b", "friendship")

    async def test_events(self, relation_store, event_bus):
        """Test create and duplicate publish created and strength events."""
        relation_id = await relation_store.create_relation("a", "b", "user_defined", strength=0.4)
        await relation_store.create_relation("a", "b", "user_defined", strength=0.6)

        created, updated = event_bus.events
        assert isinstance(created, RelationCreated)
        assert created.relation_id == relation_id
        assert isinstance(updated, RelationStrengthUpdated)
        assert (updated.old_strength, updated.new_strength) == (0.4, 0.6)


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelationReads:
    """Tests for relation reads and mutations."""

    @pytest.fixture
    async def star(self, relation_store):
        """Relations around item A."""
        ids = {
            "ab": await relation_store.create_relation("A", "B", "strong_reference", strength=0.9),
            "ad": await relation_store.create_relation("A", "D", "weak_reference", strength=0.4),
            "ea": await relation_store.create_relation(
                "E", "A", "semantic_similarity", strength=0.6, bidirectional=True
            ),
            "ca": await relation_store.create_relation("C", "A", "user_defined", strength=0.7),
            "bc": await relation_store.create_relation("B", "C", "strong_reference", strength=0.8),
        }
        return ids

    async def test_get_relation_tracks_access(self, relation_store, star):
        """Test get_relation increments the access count."""
        await relation_store.get_relation(star["ab"])
        relation = await relation_store.get_relation(star["ab"])

        assert relation.access_count == 2

    async def test_get_missing(self, relation_store):
        """Test unknown ids return None."""
        assert await relation_store.get_relation("rel_missing") is None

    async def test_item_relations(self, relation_store, star):
        """Test item relations are sorted by strength, strongest first."""
        relations = await relation_store.get_item_relations("A")

        assert [r.id for r in relations] == [star["ab"], star["ca"], star["ea"], star["ad"]]

    async def test_item_relations_outgoing_only(self, relation_store, star):
        """Test excluding incoming keeps bidirectional relations."""
        relations = await relation_store.get_item_relations("A", include_incoming=False)

        assert {r.id for r in relations} == {star["ab"], star["ad"], star["ea"]}

    async def test_query_filters(self, relation_store, star):
        """Test query filters and sorting."""
        strong = await relation_store.query_relations(
            {"types": ["strong_reference"], "sort_by": "strength", "sort_order": "asc"}
        )
        from_a = await relation_store.query_relations({"source_ids": ["A"], "min_strength": 0.5})
        into_a_from_c = await relation_store.query_relations(
            {"source_ids": ["C"], "target_ids": ["A"]}
        )
        no_bidirectional = await relation_store.query_relations({"include_bidirectional": False})

        assert [r.id for r in strong] == [star["bc"], star["ab"]]
        assert [r.id for r in from_a] == [star["ab"]]
        assert [r.id for r in into_a_from_c] == [star["ca"]]
        assert star["ea"] not in {r.id for r in no_bidirectional}

    async def test_query_pagination(self, relation_store, star):
        """Test offset and limit."""
        page = await relation_store.query_relations(
            {"sort_by": "strength", "sort_order": "desc", "offset": 1, "limit": 2}
        )

        assert [r.strength for r in page] == [0.8, 0.7]

    async def test_update_strength_clamps(self, relation_store, star, event_bus):
        """Test strength updates are clamped to [0, 1]."""
        relation = await relation_store.update_relation_strength(star["ad"], 1.7)

        assert relation.strength == 1.0
        assert isinstance(event_bus.events[-1], RelationStrengthUpdated)
        assert (await relation_store.update_relation_strength(star["ad"], -3)).strength == 0.0

    async def test_update_missing(self, relation_store):
        """Test updating an unknown relation raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await relation_store.update_relation_strength("rel_missing", 0.5)

    async def test_delete(self, relation_store, star, event_bus):
        """Test deleting removes the relation from every index."""
        await relation_store.delete_relation(star["ab"])

        assert await relation_store.get_relation(star["ab"]) is None
        assert star["ab"] not in {r.id for r in await relation_store.get_item_relations("B")}
        assert await relation_store.query_relations({"types": ["strong_reference"]}) != []
        assert isinstance(event_bus.events[-1], RelationDeleted)
        with pytest.raises(NotFoundError):
            await relation_store.delete_relation(star["ab"])

    async def test_delete_then_recreate(self, relation_store, star):
        """Test the uniqueness key is released on delete."""
        await relation_store.delete_relation(star["ab"])

        new_id = await relation_store.create_relation("A", "B", "strong_reference")

        assert new_id != star["ab"]

    async def test_delete_item_relations(self, relation_store, star):
        """Test all relations touching an item are removed."""
        removed = await relation_store.delete_item_relations("A")

        assert removed == 4
        assert [r.id for r in await relation_store.query_relations()] == [star["bc"]]


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelationGraph:
    """Tests for graph walks and recommendations."""

    @pytest.fixture
    async def chain(self, relation_store):
        """A -> B -> C -> D chain, a weak A -> E edge and an unrelated X -> Y edge."""
        await relation_store.create_relation("A", "B", "user_defined", strength=0.9)
        await relation_store.create_relation("B", "C", "user_defined", strength=0.5)
        await relation_store.create_relation("C", "D", "user_defined", strength=0.5)
        await relation_store.create_relation("A", "E", "user_defined", strength=0.05)
        await relation_store.create_relation("X", "Y", "user_defined", strength=0.9)

    async def test_build_graph_depth(self, relation_store, chain):
        """Test the walk stops at max depth and skips weak edges."""
        graph = await relation_store.build_graph(["A"], max_depth=2, min_strength=0.1)

        depths = {node.id: node.depth for node in graph.nodes}
        assert depths == {"A": 0, "B": 1, "C": 2}
        assert len(graph.edges) == 2
        assert graph.density == pytest.approx(1 / 3)
        assert graph.clusters == 1
        counts = {node.id: node.relation_count for node in graph.nodes}
        assert counts == {"A": 1, "B": 2, "C": 1}

    async def test_build_graph_walks_incoming(self, relation_store, chain):
        """Test the walk follows relations in both directions."""
        graph = await relation_store.build_graph(["C"], max_depth=1)

        assert {node.id for node in graph.nodes} == {"B", "C", "D"}

    async def test_build_graph_multiple_centers(self, relation_store, chain):
        """Test several centers start at depth 0."""
        graph = await relation_store.build_graph(["A", "X"], max_depth=1)

        depths = {node.id: node.depth for node in graph.nodes}
        assert depths == {"A": 0, "X": 0, "B": 1, "Y": 1}
        assert graph.center_ids == ["A", "X"]

    async def test_build_graph_unknown_center(self, relation_store):
        """Test an isolated center yields a single node."""
        graph = await relation_store.build_graph(["lonely"])

        assert [node.id for node in graph.nodes] == ["lonely"]
        assert graph.edges == []
        assert graph.density == 0.0

    async def test_recommend_related(self, relation_store):
        """Test direct and second-degree recommendations with decay."""
        await relation_store.create_relation("A", "B", "user_defined", strength=0.9)
        await relation_store.create_relation("B", "C", "user_defined", strength=0.8)
        await relation_store.create_relation("A", "D", "user_defined", strength=0.4)
        await relation_store.create_relation(
            "E", "A", "user_defined", strength=0.6, bidirectional=True
        )
        await relation_store.create_relation("A", "F", "user_defined", strength=0.2)

        related = await relation_store.recommend_related("A")

        assert [r.item_id for r in related] == ["B", "E", "C", "D"]
        scores = [r.score for r in related]
        assert scores == sorted(scores, reverse=True)
        c = related[2]
        assert c.depth == 2
        assert c.via == "B"
        assert c.score == pytest.approx(0.9 * 0.8 * 0.7)

    async def test_recommend_excludes(self, relation_store):
        """Test excluded ids and the item itself never appear."""
        await relation_store.create_relation("A", "B", "user_defined", strength=0.9)
        await relation_store.create_relation("B", "A", "user_defined", strength=0.9)
        await relation_store.create_relation("B", "C", "user_defined", strength=0.9)

        related = await relation_store.recommend_related("A", exclude_ids=["B"])

        assert [r.item_id for r in related] == ["C"]

    async def test_recommend_limit(self, relation_store):
        """Test the limit caps the result."""
        for i in range(5):
            await relation_store.create_relation("A", f"T{i}", "user_defined", strength=0.5)

        assert len(await relation_store.recommend_related("A", limit=3)) == 3


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelationMaintenance:
    """Tests for statistics, cleanup and index rebuild."""

    async def test_stats(self, relation_store):
        """Test strength buckets and counts."""
        await relation_store.create_relation("a", "b", "user_defined", strength=0.1)
        await relation_store.create_relation("a", "c", "user_defined", strength=0.5)
        await relation_store.create_relation(
            "a", "d", "tag_association", strength=0.9, bidirectional=True
        )

        stats = await relation_store.get_stats()

        assert stats.total_relations == 3
        assert stats.strength_distribution == {"weak": 1, "moderate": 1, "strong": 1}
        assert stats.type_distribution == {"user_defined": 2, "tag_association": 1}
        assert stats.average_strength == pytest.approx(0.5)
        assert stats.bidirectional_count == 1

    async def test_empty_stats(self, relation_store):
        """Test stats of an empty store."""
        stats = await relation_store.get_stats()

        assert stats.total_relations == 0
        assert stats.strength_distribution == {"weak": 0, "moderate": 0, "strong": 0}

    async def test_cleanup_only_stale_system_relations(self, relation_store, event_bus):
        """Test cleanup removes idle system relations and keeps the rest."""
        stale_system = await relation_store.create_relation(
            "a", "b", "derived", metadata={"created_by": "system"}
        )
        fresh_system = await relation_store.create_relation(
            "a", "c", "derived", metadata={"created_by": "system"}
        )
        stale_user = await relation_store.create_relation("a", "d", "user_defined")
        long_ago = utc_now() - timedelta(days=31)
        for relation_id in (stale_system, stale_user):
            relation_store._relations[relation_id].last_accessed = long_ago

        removed = await relation_store.cleanup()

        assert removed == 1
        assert await relation_store.get_relation(stale_system) is None
        assert await relation_store.get_relation(fresh_system) is not None
        assert await relation_store.get_relation(stale_user) is not None
        assert isinstance(event_bus.events[-1], RelationsCleanedUp)

    async def test_rebuild_indexes(self, relation_store):
        """Test rebuilding keeps lookups and the uniqueness key working."""
        relation_id = await relation_store.create_relation("a", "b", "user_defined")

        report = await relation_store.rebuild_indexes()

        assert report.items_indexed == 1
        assert await relation_store.create_relation("a", "b", "user_defined") == relation_id
        assert [r.id for r in await relation_store.get_item_relations("a")] == [relation_id]

    async def test_close_drops_everything(self, relation_store):
        """Test close clears the store."""
        await relation_store.create_relation("a", "b", "user_defined")

        await relation_store.close()

        assert len(relation_store) == 0

    async def test_batch(self, relation_store):
        """Test best-effort relation batch."""
        relation_id = await relation_store.create_relation("a", "b", "user_defined")

        result = await relation_store.batch(
            [
                {"type": "CREATE", "data": {"source_id": "x", "target_id": "y", "type": "derived"}},
                {"type": "CREATE", "data": {"source_id": "x", "target_id": "x", "type": "derived"}},
                {"type": "UPDATE", "id": relation_id, "data": {"strength": 0.9}},
                {"type": "UPDATE", "id": relation_id, "data": {}},
                {"type": "DELETE", "id": "rel_missing"},
            ]
        )

        assert [r.success for r in result.results] == [True, False, True, False, False]
        assert [r.code for r in result.failed] == [
            "CONSISTENCY_ERROR",
            "VALIDATION_ERROR",
            "NOT_FOUND",
        ]
        assert (await relation_store.get_relation(relation_id)).strength == 0.9


@pytest.mark.unit
class TestDerivationConfig:
    """Tests for strategy selection."""

    def test_unknown_strategy(self):
        """Test unknown strategy names raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            build_derivation_strategy(RelationStoreConfig(derivation_strategy="magic"))

    def test_store_uses_configured_strategy(self):
        """Test the store builds the configured strategy."""
        store = RelationStore(RelationStoreConfig(derivation_strategy="transitive"))

        assert type(store.derivation).__name__ == "TransitiveDerivation"
