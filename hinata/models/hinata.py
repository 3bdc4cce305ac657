"""
HiNATA core tuple: Highlight, Note, At (source), Tag, Access.

Every capture and knowledge entity extends this model.
"""

from enum import Enum
from typing import Annotated
from urllib.parse import urlparse

from pydantic import BaseModel, Field, StringConstraints, field_validator

from hinata.utils.logger import get_logger

logger = get_logger(__name__)

MAX_HIGHLIGHT_LENGTH = 1000
MAX_NOTE_LENGTH = 10000
MAX_TAGS = 20
MAX_TAG_LENGTH = 50

TagName = Annotated[str, StringConstraints(min_length=1, max_length=MAX_TAG_LENGTH)]


class AccessLevel(str, Enum):
    """Visibility of a HiNATA entity, from narrowest to widest."""

    PRIVATE = "PRIVATE"
    MODEL_READABLE = "MODEL_READABLE"
    SHARED = "SHARED"
    WEB3_PUBLISHED = "WEB3_PUBLISHED"

    @property
    def rank(self) -> int:
        """Position in the visibility order (0 = private)."""
        return list(AccessLevel).index(self)

    def is_wider_than(self, other: "AccessLevel") -> bool:
        return self.rank > other.rank


class ContentFormat(str, Enum):
    """Format of captured or annotated content."""

    PLAIN_TEXT = "PLAIN_TEXT"
    MARKDOWN = "MARKDOWN"
    HTML = "HTML"
    JSON = "JSON"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"


def is_url(value: str) -> bool:
    """True if the value parses as an absolute URL with a scheme and host."""
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


class HiNATACore(BaseModel):
    """
    The minimal unit every capture and knowledge entity extends.

    ``note`` must be present but may be empty. ``at`` is usually a URL;
    other values (book titles, app names) are accepted with a warning.
    """

    highlight: str = Field(..., min_length=1, max_length=MAX_HIGHLIGHT_LENGTH)
    note: str = Field(..., max_length=MAX_NOTE_LENGTH)
    at: str = Field(..., min_length=1, description="Source of the capture")
    tag: list[TagName] = Field(default_factory=list, max_length=MAX_TAGS)
    access: AccessLevel = Field(default=AccessLevel.PRIVATE)

    @field_validator("highlight", "at")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("at")
    @classmethod
    def _warn_non_url(cls, value: str) -> str:
        if not is_url(value):
            logger.warning(f"HiNATA 'at' is not a URL: {value!r}")
        return value

    def text_blob(self) -> str:
        """Denormalized text used by free-text search and similarity."""
        return " ".join([self.highlight, self.note, self.at, *self.tag])
