"""Shared fixtures for HiNATA tests.

Every store is in-memory, so fixtures use function scope and each test
gets fresh instances.
"""

from uuid import uuid4

import pytest
from loguru import logger

from hinata.config import RelationStoreConfig, TagStoreConfig
from hinata.core.block_store import KnowledgeBlockStore
from hinata.core.events import EventBus
from hinata.core.packet_store import PacketStore
from hinata.core.relation_store import RelationStore
from hinata.core.tag_store import TagStore


def make_packet_data(
    highlight: str = "Attention is all you need",
    note: str = "Transformer paper",
    at: str = "https://arxiv.org/abs/1706.03762",
    user_id: str = "user-1",
    tag: list[str] | None = None,
    **metadata,
) -> dict:
    """
    Build a packet mapping.

    Extra keyword arguments go into ``metadata`` (``capture_source``,
    ``user_action``, ``capture_timestamp``, ``packet_id``, ...).
    """
    metadata.setdefault("packet_id", str(uuid4()))
    return {
        "metadata": metadata,
        "payload": {
            "highlight": highlight,
            "note": note,
            "at": at,
            "tag": tag if tag is not None else ["ml"],
            "user_id": user_id,
        },
    }


def make_block_data(
    highlight: str = "Knowledge block",
    note: str = "",
    user_id: str = "user-1",
    library_item_id: str = "lib-1",
    tag: list[str] | None = None,
    **extra,
) -> dict:
    """Build a knowledge block mapping."""
    return {
        "highlight": highlight,
        "note": note,
        "at": "https://example.com/article",
        "user_id": user_id,
        "library_item_id": library_item_id,
        "tag": tag or [],
        **extra,
    }


@pytest.fixture
def packet_data():
    """Factory for packet mappings (see ``make_packet_data``)."""
    return make_packet_data


@pytest.fixture
def block_data():
    """Factory for knowledge block mappings (see ``make_block_data``)."""
    return make_block_data


@pytest.fixture
def log_messages():
    """Messages logged during the test, captured at DEBUG level."""
    messages = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="DEBUG"
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def event_bus():
    """Event bus recording every published event in ``bus.events``."""
    bus = EventBus()
    bus.events = []
    bus.subscribe(bus.events.append)
    return bus


@pytest.fixture
def packet_store():
    """Empty packet store."""
    return PacketStore()


@pytest.fixture
def block_store():
    """Empty knowledge block store."""
    return KnowledgeBlockStore()


@pytest.fixture
async def relation_store(event_bus):
    """Relation store without derivation, publishing to the recording bus."""
    store = RelationStore(RelationStoreConfig(), event_bus=event_bus)
    yield store
    await store.close()


@pytest.fixture
async def tag_store(event_bus):
    """Tag store without seeded system tags, publishing to the recording bus."""
    store = TagStore(TagStoreConfig(seed_system_tags=False), event_bus=event_bus)
    yield store
    await store.close()
