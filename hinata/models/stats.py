"""
Statistics, trend and report models returned by the read-only
aggregation endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from hinata.models.packet import Packet


class DistributionEntry(BaseModel):
    """Count and share of one histogram bucket."""

    count: int
    percentage: float


class TagCount(BaseModel):
    """Tag frequency."""

    tag: str
    count: int


class StorageSize(BaseModel):
    """Rough in-memory footprint, measured as serialized JSON."""

    total_bytes: int = 0
    estimated_compressed_bytes: int = 0
    compression_ratio: float = 0.7


class PacketStatistics(BaseModel):
    """Packet store statistics, optionally scoped to one user."""

    total_packets: int = 0
    total_users: int = 0
    average_attention_score: float = 0.0
    source_distribution: dict[str, DistributionEntry] = Field(default_factory=dict)
    action_distribution: dict[str, DistributionEntry] = Field(default_factory=dict)
    device_distribution: dict[str, DistributionEntry] = Field(default_factory=dict)
    daily_packet_counts: dict[str, int] = Field(default_factory=dict)
    top_tags: list[TagCount] = Field(default_factory=list)
    storage_size: StorageSize = Field(default_factory=StorageSize)


class AttentionTrendPoint(BaseModel):
    """Attention summary for one time bucket."""

    bucket: str
    average_score: float
    peak_score: float
    packet_count: int
    sources: dict[str, int] = Field(default_factory=dict)


class SimilarPacket(BaseModel):
    """Packet similar to a reference packet."""

    packet: Packet
    similarity: float
    matching_fields: list[str] = Field(default_factory=list)


class BatchItemError(BaseModel):
    """Failure of one item in a bulk store/delete."""

    id: str | None = None
    error: str
    code: str


class PacketBatchStoreResult(BaseModel):
    """Outcome of ``store_batch``."""

    stored: int = 0
    failed: int = 0
    stored_ids: list[str] = Field(default_factory=list)
    duplicates: list[str] = Field(default_factory=list)
    errors: list[BatchItemError] = Field(default_factory=list)


class PacketBatchDeleteResult(BaseModel):
    """Outcome of ``delete_batch``."""

    deleted: int = 0
    not_found: list[str] = Field(default_factory=list)
    errors: list[BatchItemError] = Field(default_factory=list)


class IndexReport(BaseModel):
    """Outcome of an index rebuild or storage optimization."""

    items_indexed: int = 0
    indexes_rebuilt: int = 0
    size_before_bytes: int = 0
    size_after_bytes: int = 0
    duration_ms: float = 0.0


class BlockStatistics(BaseModel):
    """Knowledge block statistics, optionally scoped to one user."""

    total_blocks: int = 0
    total_note_items: int = 0
    total_references: int = 0
    average_notes_per_block: float = 0.0
    most_used_tags: list[TagCount] = Field(default_factory=list)
    creation_trend: dict[str, int] = Field(default_factory=dict)


class PopularTag(BaseModel):
    """Tag usage across knowledge blocks."""

    tag: str
    count: int
    last_used: datetime
