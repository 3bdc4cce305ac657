"""
Data models for HiNATA.

Core models:
- HiNATACore, AccessLevel, ContentFormat: the capture tuple every entity extends
- Packet and its metadata/payload: ingested captures
- KnowledgeBlock, NoteItem, KnowledgeBlockReference: curated knowledge units
- Relation and graph results: generic weighted edges between item ids
- Tag, TagUsageRecord, recommendations: the tagging subsystem
- Query, search result and batch models shared by every store
- StoreEvent: lifecycle events published by the relation and tag stores
"""

from hinata.models.events import (
    RelationCreated,
    RelationDeleted,
    RelationsCleanedUp,
    RelationStrengthUpdated,
    StoreEvent,
    TagCreated,
    TagDeleted,
    TagsCleanedUp,
    TagUsed,
)
from hinata.models.hinata import AccessLevel, ContentFormat, HiNATACore
from hinata.models.knowledge_block import (
    KnowledgeBlock,
    KnowledgeBlockReference,
    NoteItem,
    PositionInfo,
    ReferenceType,
)
from hinata.models.packet import (
    Attachment,
    CaptureSource,
    DeviceContext,
    Packet,
    PacketMetadata,
    PacketPayload,
    UserAction,
    create_packet,
    default_attention_score,
)
from hinata.models.query import (
    BatchOperation,
    BatchOperationResult,
    BatchOperationType,
    BatchResult,
    DateRange,
    PacketSearchQuery,
    Pagination,
    ScoreRange,
    SearchFilters,
    SearchQuery,
    SearchResult,
    SortOptions,
    TimeRange,
)
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
    RelationStrength,
    RelationType,
)
from hinata.models.tag import (
    RecommendationOptions,
    Tag,
    TagCategory,
    TagHierarchyNode,
    TagQuery,
    TagRecommendation,
    TagStats,
    TagType,
    TagUsageRecord,
)

__all__ = [
    # HiNATA core
    "AccessLevel",
    "ContentFormat",
    "HiNATACore",
    # Packets
    "Attachment",
    "CaptureSource",
    "DeviceContext",
    "Packet",
    "PacketMetadata",
    "PacketPayload",
    "UserAction",
    "create_packet",
    "default_attention_score",
    # Knowledge blocks
    "KnowledgeBlock",
    "KnowledgeBlockReference",
    "NoteItem",
    "PositionInfo",
    "ReferenceType",
    # Relations
    "CreatedBy",
    "GraphEdge",
    "GraphNode",
    "RelatedItem",
    "Relation",
    "RelationGraph",
    "RelationMetadata",
    "RelationQuery",
    "RelationStats",
    "RelationStrength",
    "RelationType",
    # Tags
    "RecommendationOptions",
    "Tag",
    "TagCategory",
    "TagHierarchyNode",
    "TagQuery",
    "TagRecommendation",
    "TagStats",
    "TagType",
    "TagUsageRecord",
    # Queries and batches
    "BatchOperation",
    "BatchOperationResult",
    "BatchOperationType",
    "BatchResult",
    "DateRange",
    "PacketSearchQuery",
    "Pagination",
    "ScoreRange",
    "SearchFilters",
    "SearchQuery",
    "SearchResult",
    "SortOptions",
    "TimeRange",
    # Events
    "StoreEvent",
    "RelationCreated",
    "RelationStrengthUpdated",
    "RelationDeleted",
    "RelationsCleanedUp",
    "TagCreated",
    "TagUsed",
    "TagDeleted",
    "TagsCleanedUp",
]
