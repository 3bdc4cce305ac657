"""Knowledge block storage."""

from hinata.core.block_store.block_store import KnowledgeBlockStore

__all__ = ["KnowledgeBlockStore"]
