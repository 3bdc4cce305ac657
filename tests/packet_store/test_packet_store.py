"""
Tests for PacketStore.

Tests cover:
1. Store / get / update / delete with validation
2. Secondary indexes (user, source, time, keyword, tag) and pruning on delete
3. Search with filters, sorting, pagination and aggregations
4. Lexical similarity
5. Statistics and attention trend
6. Index maintenance and batch operations
"""

from datetime import UTC, datetime, timedelta

import pytest

from hinata.config import PacketStoreConfig
from hinata.core.packet_store import PacketStore
from hinata.models import BatchOperationType, CaptureSource, Packet, UserAction
from hinata.utils.exceptions import DuplicateError, NotFoundError, ValidationError


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketCrud:
    """Tests for packet CRUD."""

    async def test_store_and_get(self, packet_store, packet_data):
        """Test a stored packet round-trips with created_at == updated_at."""
        stored = await packet_store.store(packet_data())

        fetched = await packet_store.get_by_id(stored.id)

        assert fetched == stored
        assert fetched.created_at is not None
        assert fetched.created_at == fetched.updated_at
        assert len(packet_store) == 1

    async def test_store_accepts_model(self, packet_store, packet_data):
        """Test a Packet model can be stored directly."""
        packet = Packet.model_validate(packet_data())

        stored = await packet_store.store(packet)

        assert stored.id == packet.id

    async def test_returned_copy_is_isolated(self, packet_store, packet_data):
        """Test mutating a returned packet does not change stored state."""
        stored = await packet_store.store(packet_data())
        stored.payload.tag.append("mutated")

        fetched = await packet_store.get_by_id(stored.id)

        assert "mutated" not in fetched.payload.tag

    async def test_store_missing_highlight(self, packet_store, packet_data):
        """Test missing required HiNATA field raises ValidationError."""
        data = packet_data()
        del data["payload"]["highlight"]

        with pytest.raises(ValidationError) as exc_info:
            await packet_store.store(data)

        assert any("highlight" in error for error in exc_info.value.context["errors"])
        assert len(packet_store) == 0

    async def test_store_not_a_mapping(self, packet_store):
        """Test non-mapping input raises ValidationError."""
        with pytest.raises(ValidationError):
            await packet_store.store("not a packet")

    async def test_store_duplicate(self, packet_store, packet_data):
        """Test storing the same packet id twice raises DuplicateError."""
        data = packet_data()
        await packet_store.store(data)

        with pytest.raises(DuplicateError):
            await packet_store.store(data)

    async def test_get_missing(self, packet_store):
        """Test get_by_id returns None for unknown ids."""
        assert await packet_store.get_by_id("missing") is None

    async def test_get_by_ids_skips_unknown(self, packet_store, packet_data):
        """Test get_by_ids returns only existing packets, in input order."""
        first = await packet_store.store(packet_data())
        second = await packet_store.store(packet_data())

        packets = await packet_store.get_by_ids([second.id, "missing", first.id])

        assert [p.id for p in packets] == [second.id, first.id]

    async def test_update_merges_and_reindexes(self, packet_store, packet_data):
        """Test update merges nested fields and moves index entries."""
        stored = await packet_store.store(packet_data(tag=["old"]))

        updated = await packet_store.update(
            stored.id, {"payload": {"note": "new note", "tag": ["fresh"]}}
        )

        assert updated.payload.note == "new note"
        assert updated.payload.highlight == stored.payload.highlight
        assert updated.created_at == stored.created_at
        assert updated.updated_at >= stored.updated_at
        assert await packet_store.get_by_tag("old") == []
        assert [p.id for p in await packet_store.get_by_tag("fresh")] == [stored.id]

    async def test_update_invalid_leaves_packet(self, packet_store, packet_data):
        """Test an invalid update is rejected before any change."""
        stored = await packet_store.store(packet_data())

        with pytest.raises(ValidationError):
            await packet_store.update(stored.id, {"payload": {"highlight": ""}})

        assert await packet_store.get_by_id(stored.id) == stored

    async def test_update_cannot_change_id(self, packet_store, packet_data):
        """Test the packet id is immutable."""
        stored = await packet_store.store(packet_data())

        with pytest.raises(ValidationError):
            await packet_store.update(
                stored.id, {"metadata": {"packet_id": "5f1b3d52-4f9e-4a0e-9f55-0c4f3c8e7a10"}}
            )

    @pytest.mark.parametrize("metadata", [None, "packet", ["packet_id"]])
    async def test_update_metadata_must_be_mapping(self, packet_store, packet_data, metadata):
        """Test a non-mapping metadata update raises ValidationError."""
        stored = await packet_store.store(packet_data())

        with pytest.raises(ValidationError):
            await packet_store.update(stored.id, {"metadata": metadata})

        assert await packet_store.get_by_id(stored.id) == stored

    async def test_update_missing(self, packet_store):
        """Test updating an unknown packet raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await packet_store.update("missing", {"payload": {"note": "x"}})

    async def test_delete_missing(self, packet_store):
        """Test deleting an unknown packet raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await packet_store.delete("missing")

    async def test_scenario_store_then_delete(self, packet_store):
        """Test storing and deleting a packet through the user index."""
        await packet_store.store(
            {
                "payload": {
                    "highlight": "h",
                    "note": "n",
                    "at": "https://x",
                    "tag": ["ai"],
                    "access": "PRIVATE",
                    "user_id": "u1",
                }
            }
        )

        packets = await packet_store.get_by_user("u1")
        assert len(packets) == 1

        await packet_store.delete(packets[0].id)

        assert await packet_store.get_by_user("u1") == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketIndexes:
    """Tests for indexed reads."""

    async def test_get_by_user_newest_first(self, packet_store, packet_data):
        """Test user packets are ordered newest capture first and paged."""
        base = datetime(2024, 5, 1, tzinfo=UTC)
        ids = []
        for hours in range(3):
            packet = await packet_store.store(
                packet_data(capture_timestamp=base + timedelta(hours=hours))
            )
            ids.append(packet.id)
        await packet_store.store(packet_data(user_id="someone-else"))

        packets = await packet_store.get_by_user("user-1")
        page = await packet_store.get_by_user("user-1", limit=1, offset=1)

        assert [p.id for p in packets] == list(reversed(ids))
        assert [p.id for p in page] == [ids[1]]

    async def test_get_by_source(self, packet_store, packet_data):
        """Test source index lookup."""
        clip = await packet_store.store(packet_data(capture_source="WEB_CLIPPER"))
        await packet_store.store(packet_data(capture_source="MANUAL_INPUT"))

        packets = await packet_store.get_by_source(CaptureSource.WEB_CLIPPER)

        assert [p.id for p in packets] == [clip.id]

    async def test_get_by_unknown_source(self, packet_store):
        """Test unknown capture source raises ValidationError."""
        with pytest.raises(ValidationError):
            await packet_store.get_by_source("CARRIER_PIGEON")

    async def test_get_by_time_range(self, packet_store, packet_data):
        """Test time range is inclusive and ordered oldest first."""
        early = await packet_store.store(
            packet_data(capture_timestamp=datetime(2024, 3, 1, 9, 15, tzinfo=UTC))
        )
        late = await packet_store.store(
            packet_data(capture_timestamp=datetime(2024, 3, 1, 11, 45, tzinfo=UTC))
        )
        await packet_store.store(
            packet_data(capture_timestamp=datetime(2024, 3, 2, 9, 0, tzinfo=UTC))
        )

        packets = await packet_store.get_by_time_range(
            datetime(2024, 3, 1, 9, 15, tzinfo=UTC), datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        )

        assert [p.id for p in packets] == [early.id, late.id]

    async def test_get_by_time_range_filters_within_bucket(self, packet_store, packet_data):
        """Test packets in the boundary hour but outside the range are excluded."""
        await packet_store.store(
            packet_data(capture_timestamp=datetime(2024, 3, 1, 9, 5, tzinfo=UTC))
        )

        packets = await packet_store.get_by_time_range(
            datetime(2024, 3, 1, 9, 30, tzinfo=UTC), datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        )

        assert packets == []

    async def test_get_by_time_range_inverted(self, packet_store):
        """Test start after end raises ValidationError."""
        with pytest.raises(ValidationError):
            await packet_store.get_by_time_range(
                datetime(2024, 3, 2, tzinfo=UTC), datetime(2024, 3, 1, tzinfo=UTC)
            )

    async def test_keyword_and_tag_case_insensitive(self, packet_store, packet_data):
        """Test keyword and tag lookups ignore case."""
        stored = await packet_store.store(
            packet_data(highlight="Quantum Entanglement", tag=["Physics"])
        )

        assert [p.id for p in await packet_store.get_by_keyword("QUANTUM")] == [stored.id]
        assert [p.id for p in await packet_store.get_by_tag("physics")] == [stored.id]

    async def test_short_words_not_indexed(self, packet_store, packet_data):
        """Test words of two characters or fewer are not in the text index."""
        await packet_store.store(packet_data(highlight="AI is ok"))

        assert await packet_store.get_by_keyword("ai") == []

    async def test_delete_prunes_every_index(self, packet_store, packet_data):
        """Test a deleted packet disappears from every read path."""
        stamp = datetime(2024, 6, 1, 8, tzinfo=UTC)
        stored = await packet_store.store(
            packet_data(
                highlight="Zettelkasten method",
                tag=["notes"],
                capture_source="WEB_CLIPPER",
                capture_timestamp=stamp,
            )
        )

        await packet_store.delete(stored.id)

        assert await packet_store.get_by_id(stored.id) is None
        assert await packet_store.get_by_user("user-1") == []
        assert await packet_store.get_by_source("WEB_CLIPPER") == []
        assert await packet_store.get_by_time_range(stamp, stamp) == []
        assert await packet_store.get_by_keyword("zettelkasten") == []
        assert await packet_store.get_by_tag("notes") == []
        assert (await packet_store.search({"query": "zettelkasten"})).total == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketSearch:
    """Tests for packet search."""

    @pytest.fixture
    async def populated(self, packet_store, packet_data):
        """Store four packets with distinct sources, actions and scores."""
        specs = [
            ("Deep learning survey", ["ml"], "WEB_CLIPPER", "HIGHLIGHT", 40, "user-1"),
            ("Learning Rust ownership", ["rust"], "MANUAL_INPUT", "QUICK_SAVE", 10, "user-1"),
            ("Gardening tips", ["garden"], "SCREENSHOT_OCR", "BOOKMARK", 25, "user-1"),
            ("Deep work habits", ["ml", "focus"], "WEB_CLIPPER", "SHARE", 30, "user-2"),
        ]
        stored = []
        for i, (highlight, tags, source, action, score, user) in enumerate(specs):
            stored.append(
                await packet_store.store(
                    packet_data(
                        highlight=highlight,
                        tag=tags,
                        user_id=user,
                        capture_source=source,
                        user_action=action,
                        attention_score_raw=score,
                        capture_timestamp=datetime(2024, 1, 1 + i, tzinfo=UTC),
                    )
                )
            )
        return stored

    async def test_free_text_and_of_terms(self, packet_store, populated):
        """Test every query term must match."""
        result = await packet_store.search({"query": "deep learning"})

        assert [p.payload.highlight for p in result.items] == ["Deep learning survey"]
        assert result.total == 1
        assert result.query == "deep learning"

    async def test_filters(self, packet_store, populated):
        """Test user, tag, source, action and score filters combine."""
        by_user = await packet_store.search({"filters": {"user_id": "user-2"}})
        by_tag = await packet_store.search({"filters": {"tags": ["ML"]}})
        by_source = await packet_store.search({"sources": ["WEB_CLIPPER"], "user_actions": ["SHARE"]})
        by_score = await packet_store.search({"attention_score_range": {"min": 20, "max": 35}})

        assert by_user.total == 1
        assert by_tag.total == 2
        assert [p.payload.highlight for p in by_source.items] == ["Deep work habits"]
        assert {p.payload.highlight for p in by_score.items} == {"Gardening tips", "Deep work habits"}

    async def test_date_range_and_attachments(self, packet_store, populated):
        """Test date range and attachment filters."""
        in_range = await packet_store.search(
            {"filters": {"date_range": {"start": "2024-01-02T00:00:00Z", "end": "2024-01-03T00:00:00Z"}}}
        )
        with_attachments = await packet_store.search({"has_attachments": True})

        assert in_range.total == 2
        assert with_attachments.total == 0

    async def test_sort_and_paginate(self, packet_store, populated):
        """Test sorting by attention score and page metadata."""
        first_page = await packet_store.search(
            {"sort": {"field": "attention_score", "order": "asc"}, "pagination": {"page": 1, "limit": 3}}
        )
        second_page = await packet_store.search(
            {"sort": {"field": "attention_score", "order": "asc"}, "pagination": {"page": 2, "limit": 3}}
        )

        assert [p.attention_score for p in first_page.items] == [10, 25, 30]
        assert first_page.has_more is True
        assert [p.attention_score for p in second_page.items] == [40]
        assert second_page.has_more is False
        assert second_page.total == 4

    async def test_default_sort_newest_first(self, packet_store, populated):
        """Test default sort is capture timestamp descending."""
        result = await packet_store.search({})

        assert result.items[0].payload.highlight == "Deep work habits"

    async def test_unknown_sort_field(self, packet_store, populated):
        """Test unknown sort field raises ValidationError."""
        with pytest.raises(ValidationError):
            await packet_store.search({"sort": {"field": "color"}})

    async def test_default_page_size_from_config(self, populated):
        """Test searches without an explicit limit use the configured page size."""
        store = PacketStore(PacketStoreConfig(default_page_size=2))
        for packet in populated:
            await store.store(packet)

        default = await store.search({"pagination": {"page": 2}})
        explicit = await store.search({"pagination": {"limit": 3}})

        assert default.limit == 2
        assert len(default.items) == 2
        assert default.has_more is False
        assert explicit.limit == 3

    async def test_aggregations_before_pagination(self, packet_store, populated):
        """Test aggregations cover the whole filtered set."""
        result = await packet_store.search({"pagination": {"limit": 1}})

        aggregations = result.aggregations
        assert len(result.items) == 1
        assert aggregations.sources == {"WEB_CLIPPER": 2, "MANUAL_INPUT": 1, "SCREENSHOT_OCR": 1}
        assert aggregations.attention.min == 10
        assert aggregations.attention.max == 40
        assert aggregations.attention.average == pytest.approx(26.25)
        assert aggregations.attention.median == 30

    async def test_empty_result(self, packet_store):
        """Test searching an empty store."""
        result = await packet_store.search({"query": "anything"})

        assert result.items == []
        assert result.total == 0
        assert result.aggregations.attention is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketSimilarity:
    """Tests for similarity."""

    async def test_similar_packets(self, packet_store, packet_data):
        """Test near-duplicates score above the threshold and unrelated packets don't."""
        reference = await packet_store.store(packet_data(tag=["ml"]))
        twin = await packet_store.store(packet_data(tag=["ml"]))
        await packet_store.store(
            packet_data(
                highlight="Sourdough starter",
                note="bread",
                at="https://baking.example",
                tag=["food"],
                capture_source="API_INGEST",
                user_action="SHARE",
            )
        )

        matches = await packet_store.get_similar_packets(reference.id)

        assert [m.packet.id for m in matches] == [twin.id]
        assert matches[0].similarity == pytest.approx(1.0)
        assert set(matches[0].matching_fields) == {
            "highlight",
            "tags",
            "capture_source",
            "user_action",
            "at",
        }

    async def test_threshold_and_limit(self, packet_store, packet_data):
        """Test explicit threshold and limit."""
        reference = await packet_store.store(packet_data())
        for _ in range(3):
            await packet_store.store(packet_data())

        matches = await packet_store.get_similar_packets(reference.id, threshold=0.0, limit=2)

        assert len(matches) == 2
        assert all(m.packet.id != reference.id for m in matches)

    async def test_missing_reference(self, packet_store):
        """Test unknown reference packet raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await packet_store.get_similar_packets("missing")

    async def test_similarity_weights(self, packet_data):
        """Test the weighted components of the heuristic."""
        a = Packet.model_validate(packet_data(highlight="alpha", note="", at="https://a", tag=[]))
        b = Packet.model_validate(
            packet_data(
                highlight="omega",
                note="",
                at="https://b",
                tag=[],
                user_action="SHARE",
            )
        )

        score, fields = PacketStore.similarity(a, b)

        # Only the capture source matches
        assert score == pytest.approx(0.1)
        assert fields == ["capture_source"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketStatistics:
    """Tests for statistics and trends."""

    async def test_empty_statistics(self, packet_store):
        """Test statistics of an empty store."""
        stats = await packet_store.get_statistics()

        assert stats.total_packets == 0
        assert stats.top_tags == []

    async def test_statistics(self, packet_store, packet_data):
        """Test totals and distributions."""
        await packet_store.store(
            packet_data(tag=["ml"], capture_source="WEB_CLIPPER", attention_score_raw=10)
        )
        await packet_store.store(
            packet_data(tag=["ml", "nlp"], capture_source="WEB_CLIPPER", attention_score_raw=20)
        )
        await packet_store.store(
            packet_data(user_id="user-2", capture_source="MANUAL_INPUT", attention_score_raw=30)
        )

        stats = await packet_store.get_statistics()
        user_stats = await packet_store.get_statistics("user-2")

        assert stats.total_packets == 3
        assert stats.total_users == 2
        assert stats.average_attention_score == pytest.approx(20)
        assert stats.source_distribution["WEB_CLIPPER"].count == 2
        assert stats.source_distribution["WEB_CLIPPER"].percentage == pytest.approx(66.67)
        assert stats.device_distribution["unknown"].count == 3
        assert stats.top_tags[0].tag == "ml"
        assert stats.top_tags[0].count == 3
        assert stats.storage_size.total_bytes > 0
        assert user_stats.total_packets == 1

    async def test_attention_trend(self, packet_store, packet_data):
        """Test attention score is bucketed per day."""
        for day, score in [(1, 10), (1, 30), (3, 50)]:
            await packet_store.store(
                packet_data(
                    attention_score_raw=score,
                    capture_timestamp=datetime(2024, 4, day, 12, tzinfo=UTC),
                )
            )

        trend = await packet_store.get_attention_trend(
            "user-1",
            {"start": "2024-04-01T00:00:00Z", "end": "2024-04-30T00:00:00Z", "granularity": "day"},
        )

        assert [point.bucket for point in trend] == ["2024-04-01", "2024-04-03"]
        assert trend[0].average_score == pytest.approx(20)
        assert trend[0].peak_score == 30
        assert trend[0].packet_count == 2

    async def test_attention_trend_month(self, packet_store, packet_data):
        """Test monthly buckets."""
        await packet_store.store(packet_data(capture_timestamp=datetime(2024, 4, 2, tzinfo=UTC)))
        await packet_store.store(packet_data(capture_timestamp=datetime(2024, 5, 2, tzinfo=UTC)))

        trend = await packet_store.get_attention_trend(
            "user-1",
            {"start": "2024-01-01T00:00:00Z", "end": "2024-12-31T00:00:00Z", "granularity": "month"},
        )

        assert [point.bucket for point in trend] == ["2024-04", "2024-05"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestPacketMaintenanceAndBatch:
    """Tests for index maintenance and batch operations."""

    async def test_rebuild_index(self, packet_store, packet_data):
        """Test rebuilding keeps every lookup working."""
        stored = await packet_store.store(packet_data(tag=["kept"]))

        report = await packet_store.rebuild_index()

        assert report.items_indexed == 1
        assert report.indexes_rebuilt == 5
        assert [p.id for p in await packet_store.get_by_tag("kept")] == [stored.id]

    async def test_optimize_storage(self, packet_store, packet_data):
        """Test optimize reports the storage footprint."""
        await packet_store.store(packet_data())

        report = await packet_store.optimize_storage()

        assert report.size_before_bytes > 0
        assert report.size_after_bytes == report.size_before_bytes

    async def test_store_batch_reports_duplicates(self, packet_store, packet_data):
        """Test batch store continues past duplicates and invalid packets."""
        data = packet_data()
        invalid = packet_data()
        del invalid["payload"]["note"]

        result = await packet_store.store_batch([data, data, invalid, packet_data()])

        assert result.stored == 2
        assert result.failed == 2
        assert result.duplicates == [data["metadata"]["packet_id"]]
        assert {error.code for error in result.errors} == {"DUPLICATE", "VALIDATION_ERROR"}

    async def test_delete_batch(self, packet_store, packet_data):
        """Test batch delete reports unknown ids."""
        stored = await packet_store.store(packet_data())

        result = await packet_store.delete_batch([stored.id, "missing"])

        assert result.deleted == 1
        assert result.not_found == ["missing"]

    async def test_batch_is_best_effort(self, packet_store, packet_data):
        """Test a failing operation doesn't stop the batch."""
        stored = await packet_store.store(packet_data())

        result = await packet_store.batch(
            [
                {"type": "CREATE", "data": packet_data()},
                {"type": "DELETE", "id": "missing"},
                {"type": "UPDATE", "id": stored.id, "data": {"payload": {"note": "edited"}}},
                {"type": "DELETE"},
            ]
        )

        assert result.success is False
        assert [r.success for r in result.results] == [True, False, True, False]
        assert result.results[1].code == "NOT_FOUND"
        assert result.results[3].code == "VALIDATION_ERROR"
        assert result.results[0].operation.type == BatchOperationType.CREATE
        assert (await packet_store.get_by_id(stored.id)).payload.note == "edited"
        assert len(packet_store) == 2

    async def test_update_action_changes_default_score_only_when_unset(
        self, packet_store, packet_data
    ):
        """Test a stored default score is kept when the action changes."""
        stored = await packet_store.store(packet_data(user_action="QUICK_SAVE"))

        updated = await packet_store.update(
            stored.id, {"metadata": {"user_action": UserAction.DETAILED_EDIT.value}}
        )

        assert updated.metadata.user_action == UserAction.DETAILED_EDIT
        assert updated.attention_score == stored.attention_score
