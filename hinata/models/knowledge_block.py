"""
Knowledge block models.

A knowledge block is a user-curated unit derived from a library item. It
owns an ordered list of note items and typed references to other blocks.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from hinata.models.hinata import ContentFormat, HiNATACore
from hinata.utils.id_generator import (
    generate_block_id,
    generate_note_item_id,
    generate_reference_id,
)
from hinata.utils.timeutils import utc_now


class ReferenceType(str, Enum):
    """Kind of block-to-block reference."""

    STRONG = "STRONG"
    WEAK = "WEAK"
    HIERARCHICAL = "HIERARCHICAL"
    SEMANTIC = "SEMANTIC"


class PositionInfo(BaseModel):
    """Location of a block inside its library item."""

    start_offset: int | None = Field(default=None, ge=0)
    end_offset: int | None = Field(default=None, ge=0)
    line_number: int | None = Field(default=None, ge=0)
    column_number: int | None = Field(default=None, ge=0)
    xpath: str | None = None


class NoteItem(BaseModel):
    """A sub-note of a knowledge block, ordered by ``order``."""

    id: str = Field(default_factory=generate_note_item_id)
    knowledge_block_id: str
    content: str = Field(..., min_length=1)
    content_format: ContentFormat = ContentFormat.PLAIN_TEXT
    order: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class KnowledgeBlockReference(BaseModel):
    """Directed edge from one block (optionally one of its note items) to another block."""

    id: str = Field(default_factory=generate_reference_id)
    source_block_id: str
    source_note_item_id: str | None = None
    target_block_id: str
    reference_type: ReferenceType = ReferenceType.STRONG
    context: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class KnowledgeBlock(HiNATACore):
    """
    Knowledge block.

    ``backlinks`` lists the ids of blocks holding at least one reference
    that targets this block. It is maintained by the block store only.
    """

    id: str = Field(default_factory=generate_block_id)
    user_id: str = Field(..., min_length=1)
    library_item_id: str = Field(..., min_length=1)
    position_in_item: PositionInfo | None = None
    note_items: list[NoteItem] = Field(default_factory=list)
    references: list[KnowledgeBlockReference] = Field(default_factory=list)
    backlinks: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def text_blob(self) -> str:
        """HiNATA text plus the content of every note item."""
        return " ".join([super().text_blob(), *(item.content for item in self.note_items)])
