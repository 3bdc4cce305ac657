"""
Query, search result and batch models shared by the stores.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from hinata.models.hinata import AccessLevel
from hinata.models.packet import CaptureSource, UserAction
from hinata.utils.timeutils import ensure_utc

T = TypeVar("T")

SortOrder = Literal["asc", "desc"]


class DateRange(BaseModel):
    """Inclusive time window. Either bound may be open."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def contains(self, value: datetime) -> bool:
        value = ensure_utc(value)
        if self.start and value < self.start:
            return False
        if self.end and value > self.end:
            return False
        return True


class SortOptions(BaseModel):
    """Sort field and direction."""

    field: str
    order: SortOrder = "desc"


class Pagination(BaseModel):
    """Page-based pagination. Pages start at 1."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class SearchFilters(BaseModel):
    """Filters common to packet and block search."""

    user_id: str | None = None
    tags: list[str] | None = None
    access_level: list[AccessLevel] | None = None
    date_range: DateRange | None = None


class SearchQuery(BaseModel):
    """Free-text search with filters, sort and pagination."""

    query: str = ""
    filters: SearchFilters = Field(default_factory=SearchFilters)
    sort: SortOptions | None = None
    pagination: Pagination = Field(default_factory=Pagination)


class ScoreRange(BaseModel):
    """Inclusive attention score range."""

    min: float | None = None
    max: float | None = None


class PacketSearchQuery(SearchQuery):
    """Packet search with packet-specific filters."""

    sources: list[CaptureSource] | None = None
    user_actions: list[UserAction] | None = None
    attention_score_range: ScoreRange | None = None
    device_types: list[str] | None = None
    has_attachments: bool | None = None


class AttentionStats(BaseModel):
    """Attention score summary over a result set."""

    min: float
    max: float
    average: float
    median: float


class PacketAggregations(BaseModel):
    """Aggregations over the filtered, pre-pagination packet set."""

    sources: dict[str, int] = Field(default_factory=dict)
    user_actions: dict[str, int] = Field(default_factory=dict)
    attention: AttentionStats | None = None


class SearchResult(BaseModel, Generic[T]):
    """One page of search results."""

    items: list[T]
    total: int
    page: int
    limit: int
    has_more: bool
    query: str = ""
    execution_time_ms: float = 0.0
    aggregations: PacketAggregations | None = None


class BatchOperationType(str, Enum):
    """Kind of batch operation."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class BatchOperation(BaseModel):
    """One create/update/delete operation in a batch."""

    type: BatchOperationType
    id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class BatchOperationResult(BaseModel):
    """Outcome of one batch operation."""

    operation: BatchOperation
    success: bool
    result: Any = None
    error: str | None = None
    code: str | None = None


class BatchResult(BaseModel):
    """Best-effort batch outcome. ``success`` is true only if every operation succeeded."""

    success: bool
    results: list[BatchOperationResult] = Field(default_factory=list)

    @property
    def failed(self) -> list[BatchOperationResult]:
        return [r for r in self.results if not r.success]


class TimeRange(BaseModel):
    """Time window with a bucket granularity, used by trend queries."""

    start: datetime
    end: datetime
    granularity: Literal["hour", "day", "week", "month"] = "day"

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
