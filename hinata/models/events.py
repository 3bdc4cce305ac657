"""
Store lifecycle events.

Events form a closed union discriminated by ``kind`` so that subscribers
can dispatch on the concrete type.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from hinata.models.relation import RelationType
from hinata.utils.timeutils import utc_now


class _Event(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)


class RelationCreated(_Event):
    kind: Literal["relation_created"] = "relation_created"
    relation_id: str
    source_id: str
    target_id: str
    type: RelationType
    strength: float
    derived: bool = False


class RelationStrengthUpdated(_Event):
    kind: Literal["relation_strength_updated"] = "relation_strength_updated"
    relation_id: str
    old_strength: float
    new_strength: float


class RelationDeleted(_Event):
    kind: Literal["relation_deleted"] = "relation_deleted"
    relation_id: str
    source_id: str
    target_id: str


class RelationsCleanedUp(_Event):
    kind: Literal["relations_cleaned_up"] = "relations_cleaned_up"
    removed: int


class TagCreated(_Event):
    kind: Literal["tag_created"] = "tag_created"
    tag_id: str
    name: str


class TagUsed(_Event):
    kind: Literal["tag_used"] = "tag_used"
    tag_id: str
    item_id: str
    usage_count: int


class TagDeleted(_Event):
    kind: Literal["tag_deleted"] = "tag_deleted"
    tag_id: str
    name: str


class TagsCleanedUp(_Event):
    kind: Literal["tags_cleaned_up"] = "tags_cleaned_up"
    removed: int


StoreEvent = Annotated[
    RelationCreated
    | RelationStrengthUpdated
    | RelationDeleted
    | RelationsCleanedUp
    | TagCreated
    | TagUsed
    | TagDeleted
    | TagsCleanedUp,
    Field(discriminator="kind"),
]

store_event_adapter: TypeAdapter[StoreEvent] = TypeAdapter(StoreEvent)
