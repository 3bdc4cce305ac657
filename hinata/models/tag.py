"""
Tag models: tag records, usage records, queries and recommendations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hinata.models.query import DateRange
from hinata.models.relation import CreatedBy
from hinata.utils.id_generator import generate_tag_id, generate_usage_id
from hinata.utils.timeutils import utc_now


class TagType(str, Enum):
    """Origin of a tag."""

    USER = "user"
    SYSTEM = "system"
    AI_EXTRACTED = "ai_extracted"
    CONTENT_BASED = "content_based"
    BEHAVIORAL = "behavioral"


class TagCategory(str, Enum):
    """Semantic category of a tag."""

    TOPIC = "topic"
    CONTENT_TYPE = "content_type"
    PRIORITY = "priority"
    STATUS = "status"
    PROJECT = "project"
    TEMPORAL = "temporal"
    SENTIMENT = "sentiment"
    TECHNICAL = "technical"
    OTHER = "other"


CATEGORY_COLORS: dict[TagCategory, str] = {
    TagCategory.TOPIC: "#3B82F6",
    TagCategory.CONTENT_TYPE: "#10B981",
    TagCategory.PRIORITY: "#F59E0B",
    TagCategory.STATUS: "#8B5CF6",
    TagCategory.PROJECT: "#EF4444",
    TagCategory.TEMPORAL: "#06B6D4",
    TagCategory.SENTIMENT: "#F97316",
    TagCategory.TECHNICAL: "#6B7280",
    TagCategory.OTHER: "#9CA3AF",
}

UsageMethod = Literal["manual", "auto", "suggested"]


class TagMetadata(BaseModel):
    """Provenance and expiry of a tag."""

    created_by: CreatedBy = CreatedBy.USER
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    expires_at: datetime | None = None
    properties: dict[str, Any] = Field(default_factory=dict)


class Tag(BaseModel):
    """
    Tag record.

    ``name`` is normalized (lower-case, trimmed, whitespace runs replaced by
    underscores) and globally unique together with every synonym.
    """

    id: str = Field(default_factory=generate_tag_id)
    name: str = Field(..., min_length=1)
    type: TagType = TagType.USER
    category: TagCategory = TagCategory.OTHER
    description: str | None = None
    color: str | None = None
    icon: str | None = None
    usage_count: int = Field(default=0, ge=0)
    weight: float = Field(default=0.0, ge=0.0, le=1.0)
    parent_id: str | None = None
    children_ids: list[str] = Field(default_factory=list)
    synonyms: list[str] = Field(default_factory=list)
    related_tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_used: datetime | None = None
    metadata: TagMetadata = Field(default_factory=TagMetadata)


class TagUsageRecord(BaseModel):
    """Immutable record of one tag application."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_usage_id)
    tag_id: str
    item_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    method: UsageMethod = "manual"
    context: str | None = None


class TagQuery(BaseModel):
    """Tag query options."""

    name_pattern: str | None = Field(default=None, description="Case-insensitive regex")
    types: list[TagType] | None = None
    categories: list[TagCategory] | None = None
    min_usage: int | None = Field(default=None, ge=0)
    max_usage: int | None = Field(default=None, ge=0)
    date_range: DateRange | None = None
    parent_id: str | None = None
    include_children: bool = False
    sort_by: Literal["name", "usage", "created", "last_used", "weight"] = "usage"
    sort_order: Literal["asc", "desc"] = "desc"
    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)


class RecommendationOptions(BaseModel):
    """Tag recommendation options. ``None`` selects the defaults."""

    content_based: bool = True
    history_based: bool = True
    similarity_based: bool = True
    limit: int | None = Field(default=None, ge=1)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class TagRecommendation(BaseModel):
    """A recommended tag."""

    tag_id: str
    tag_name: str
    score: float
    confidence: float
    reason: Literal["content_match", "popularity", "related"]


class TagHierarchyNode(BaseModel):
    """Tag with its subtree."""

    tag: Tag
    children: list["TagHierarchyNode"] = Field(default_factory=list)


class TagStats(BaseModel):
    """Aggregate tag statistics."""

    total_tags: int = 0
    active_tags: int = 0
    type_distribution: dict[str, int] = Field(default_factory=dict)
    category_distribution: dict[str, int] = Field(default_factory=dict)
    usage_distribution: dict[str, int] = Field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )
    average_usage: float = 0.0
    total_usage_records: int = 0
