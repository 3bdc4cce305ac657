"""
HiNATA engine.

Wires the four stores, the event bus and the maintenance worker from a
single ``Config`` and owns their lifecycle.
"""

from typing import Any

from pydantic import BaseModel

from hinata.config import Config
from hinata.core.block_store import KnowledgeBlockStore
from hinata.core.events import EventBus
from hinata.core.packet_store import PacketStore
from hinata.core.relation_store import RelationStore
from hinata.core.tag_store import TagStore
from hinata.models.knowledge_block import KnowledgeBlock
from hinata.models.relation import Relation, RelationStats
from hinata.models.stats import BlockStatistics, PacketStatistics
from hinata.models.tag import Tag, TagStats
from hinata.services.maintenance import MaintenanceWorker
from hinata.utils.exceptions import NotFoundError
from hinata.utils.logger import get_logger

logger = get_logger(__name__)


class EngineStatistics(BaseModel):
    """Statistics of every store."""

    packets: PacketStatistics
    blocks: BlockStatistics
    relations: RelationStats
    tags: TagStats


class BlockContext(BaseModel):
    """A knowledge block with its tags and relations."""

    block: KnowledgeBlock
    tags: list[Tag]
    relations: list[Relation]


class HiNATAEngine:
    """
    Facade over the packet, block, relation and tag stores.

    Usage:
        engine = HiNATAEngine(Config.from_env())
        await engine.initialize()
        ...
        await engine.close()
    """

    def __init__(self, config: Config | None = None, **overrides: Any):
        """
        Initialize engine components.

        Args:
            config: Engine configuration (defaults when omitted)
            **overrides: Replace a component (``packets``, ``blocks``,
                ``relations``, ``tags``, ``event_bus``), mainly for tests
        """
        self.config = config or Config()
        self.event_bus: EventBus = overrides.get("event_bus") or EventBus()
        self.packets: PacketStore = overrides.get("packets") or PacketStore(self.config.packets)
        self.blocks: KnowledgeBlockStore = overrides.get("blocks") or KnowledgeBlockStore()
        self.relations: RelationStore = overrides.get("relations") or RelationStore(
            self.config.relations, event_bus=self.event_bus
        )
        self.tags: TagStore = overrides.get("tags") or TagStore(
            self.config.tags, event_bus=self.event_bus
        )
        self.maintenance = MaintenanceWorker(
            self.packets, self.relations, self.tags, self.config.maintenance
        )
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Seed system tags and start background maintenance, as configured."""
        if self._initialized:
            return
        if self.config.tags.seed_system_tags:
            await self.tags.initialize()
        if self.config.maintenance.enabled:
            self.maintenance.start()
        self._initialized = True
        logger.info("HiNATA engine initialized")

    async def close(self) -> None:
        """Stop maintenance and release the stores."""
        await self.maintenance.stop()
        await self.relations.close()
        await self.tags.close()
        self._initialized = False
        logger.info("HiNATA engine closed")

    async def get_statistics(self, user_id: str | None = None) -> EngineStatistics:
        """Statistics of every store; packet and block stats may be scoped to a user."""
        return EngineStatistics(
            packets=await self.packets.get_statistics(user_id),
            blocks=await self.blocks.get_statistics(user_id),
            relations=await self.relations.get_stats(),
            tags=await self.tags.get_stats(),
        )

    async def get_block_context(self, block_id: str) -> BlockContext:
        """
        A block together with its resolved tags and its relations.

        Block tags that don't name a stored tag are skipped.

        Raises:
            NotFoundError: If the block doesn't exist
        """
        block = await self.blocks.get_by_id(block_id)
        if block is None:
            raise NotFoundError(f"Knowledge block not found: {block_id}", context={"block_id": block_id})

        tags = []
        for name in block.tag:
            tag = await self.tags.get_tag_by_name(name)
            if tag is not None:
                tags.append(tag)
        return BlockContext(
            block=block,
            tags=tags,
            relations=await self.relations.get_item_relations(block_id),
        )
