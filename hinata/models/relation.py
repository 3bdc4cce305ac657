"""
Generic relation models.

Relations are typed, weighted edges between opaque item ids. They are
distinct from block-to-block references owned by the block store.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from hinata.models.query import DateRange
from hinata.utils.id_generator import generate_relation_id
from hinata.utils.timeutils import utc_now


class RelationType(str, Enum):
    """Kinds of generic relations."""

    STRONG_REFERENCE = "strong_reference"
    WEAK_REFERENCE = "weak_reference"
    SEMANTIC_SIMILARITY = "semantic_similarity"
    TEMPORAL_ASSOCIATION = "temporal_association"
    TAG_ASSOCIATION = "tag_association"
    USER_DEFINED = "user_defined"
    DERIVED = "derived"


class RelationStrength(float, Enum):
    """Named strength presets."""

    VERY_WEAK = 0.1
    WEAK = 0.3
    MODERATE = 0.5
    STRONG = 0.7
    VERY_STRONG = 0.9


class CreatedBy(str, Enum):
    """Who created a relation or tag."""

    USER = "user"
    SYSTEM = "system"
    AI = "ai"


class RelationMetadata(BaseModel):
    """Provenance of a relation."""

    created_by: CreatedBy = CreatedBy.USER
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    context: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)


class Relation(BaseModel):
    """Typed, weighted edge between two item ids."""

    id: str = Field(default_factory=generate_relation_id)
    source_id: str = Field(..., min_length=1)
    target_id: str = Field(..., min_length=1)
    type: RelationType
    strength: float = Field(default=RelationStrength.MODERATE.value, ge=0.0, le=1.0)
    bidirectional: bool = False
    access_count: int = Field(default=0, ge=0)
    last_accessed: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: RelationMetadata = Field(default_factory=RelationMetadata)

    @property
    def key(self) -> tuple[str, str, RelationType]:
        """Uniqueness key: at most one relation per (source, target, type)."""
        return (self.source_id, self.target_id, self.type)


class RelationQuery(BaseModel):
    """Relation query options."""

    source_ids: list[str] | None = None
    target_ids: list[str] | None = None
    types: list[RelationType] | None = None
    min_strength: float | None = Field(default=None, ge=0.0, le=1.0)
    max_strength: float | None = Field(default=None, ge=0.0, le=1.0)
    include_bidirectional: bool = True
    date_range: DateRange | None = None
    sort_by: Literal["strength", "created", "updated", "accessed"] = "created"
    sort_order: Literal["asc", "desc"] = "desc"
    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)


class GraphNode(BaseModel):
    """Item reached during a graph walk."""

    id: str
    depth: int
    relation_count: int = 0


class GraphEdge(BaseModel):
    """Relation included in a graph walk."""

    id: str
    source_id: str
    target_id: str
    type: RelationType
    strength: float
    bidirectional: bool = False


class RelationGraph(BaseModel):
    """Result of ``build_graph``."""

    center_ids: list[str]
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    density: float = 0.0
    clusters: int = 0


class RelatedItem(BaseModel):
    """Recommended related item."""

    item_id: str
    score: float
    relation_type: RelationType
    depth: Literal[1, 2] = 1
    via: str | None = Field(default=None, description="Intermediate item for second-degree matches")


class RelationStats(BaseModel):
    """Aggregate relation statistics."""

    total_relations: int = 0
    type_distribution: dict[str, int] = Field(default_factory=dict)
    strength_distribution: dict[str, int] = Field(
        default_factory=lambda: {"weak": 0, "moderate": 0, "strong": 0}
    )
    average_strength: float = 0.0
    bidirectional_count: int = 0
    system_created_count: int = 0
