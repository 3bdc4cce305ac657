"""
Core stores.

- PacketStore: ingested capture packets with five secondary indexes
- KnowledgeBlockStore: knowledge blocks, note items, references and backlinks
- RelationStore: typed, weighted relations between item ids
- TagStore: tags with hierarchy, synonyms, usage, recommendation and extraction
- EventBus: observer list receiving relation and tag lifecycle events
"""

from hinata.core.block_store import KnowledgeBlockStore
from hinata.core.events import EventBus
from hinata.core.packet_store import PacketStore
from hinata.core.relation_store import RelationStore
from hinata.core.tag_store import TagStore

__all__ = [
    "PacketStore",
    "KnowledgeBlockStore",
    "RelationStore",
    "TagStore",
    "EventBus",
]
