"""
Capture packet models.

A packet is one ingested capture event: device/source metadata plus a
HiNATA payload owned by a user.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from hinata.models.hinata import AccessLevel, ContentFormat, HiNATACore
from hinata.utils.id_generator import generate_packet_id
from hinata.utils.logger import get_logger
from hinata.utils.timeutils import ensure_utc, utc_now

logger = get_logger(__name__)


class CaptureSource(str, Enum):
    """Where a packet was captured."""

    WEB_CLIPPER = "WEB_CLIPPER"
    IOS_SHARE_EXTENSION = "IOS_SHARE_EXTENSION"
    ANDROID_SHARE_EXTENSION = "ANDROID_SHARE_EXTENSION"
    SCREENSHOT_OCR = "SCREENSHOT_OCR"
    MANUAL_INPUT = "MANUAL_INPUT"
    WECHAT_FORWARDER = "WECHAT_FORWARDER"
    API_INGEST = "API_INGEST"


class UserAction(str, Enum):
    """The user gesture that produced the capture."""

    QUICK_SAVE = "QUICK_SAVE"
    DETAILED_EDIT = "DETAILED_EDIT"
    HIGHLIGHT = "HIGHLIGHT"
    BOOKMARK = "BOOKMARK"
    SHARE = "SHARE"


# Default attention score = source score + action score
SOURCE_ATTENTION_SCORES: dict[CaptureSource, float] = {
    CaptureSource.MANUAL_INPUT: 10,
    CaptureSource.WEB_CLIPPER: 8,
    CaptureSource.SCREENSHOT_OCR: 7,
    CaptureSource.IOS_SHARE_EXTENSION: 6,
    CaptureSource.ANDROID_SHARE_EXTENSION: 6,
    CaptureSource.WECHAT_FORWARDER: 5,
    CaptureSource.API_INGEST: 3,
}

ACTION_ATTENTION_SCORES: dict[UserAction, float] = {
    UserAction.DETAILED_EDIT: 10,
    UserAction.HIGHLIGHT: 8,
    UserAction.BOOKMARK: 6,
    UserAction.SHARE: 5,
    UserAction.QUICK_SAVE: 3,
}


def default_attention_score(source: CaptureSource, action: UserAction) -> float:
    """Attention score assigned when the capture pipeline doesn't supply one."""
    return SOURCE_ATTENTION_SCORES[source] + ACTION_ATTENTION_SCORES[action]


def _check_uuid(value: str) -> str:
    try:
        UUID(value)
    except ValueError as e:
        raise ValueError(f"not a valid UUID: {value!r}") from e
    return value


class DeviceContext(BaseModel):
    """Device that produced a capture."""

    device_id: str = Field(default_factory=generate_packet_id)
    device_type: str | None = None
    os_version: str = Field(default="unknown", min_length=1, max_length=50)
    app_version: str = "1.0.0"
    user_agent: str | None = None
    screen_resolution: str | None = None
    timezone: str = "UTC"

    @field_validator("device_id")
    @classmethod
    def _validate_device_id(cls, value: str) -> str:
        return _check_uuid(value)


class Attachment(BaseModel):
    """File attached to a capture."""

    id: str
    filename: str = Field(..., min_length=1)
    mime_type: str
    size: int = Field(..., ge=0)
    url: str | None = None
    local_path: str | None = None
    checksum: str = ""


class PacketMetadata(BaseModel):
    """Capture metadata."""

    packet_id: str = Field(default_factory=generate_packet_id)
    capture_source: CaptureSource = CaptureSource.MANUAL_INPUT
    capture_timestamp: datetime = Field(default_factory=utc_now)
    user_action: UserAction = UserAction.QUICK_SAVE
    device_context: DeviceContext = Field(default_factory=DeviceContext)
    attention_score_raw: float | None = Field(default=None, ge=0)
    processing_flags: dict[str, bool] = Field(default_factory=dict)

    @field_validator("packet_id")
    @classmethod
    def _validate_packet_id(cls, value: str) -> str:
        return _check_uuid(value)

    @field_validator("capture_timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _fill_attention_score(self) -> "PacketMetadata":
        if self.attention_score_raw is None:
            self.attention_score_raw = default_attention_score(
                self.capture_source, self.user_action
            )
        elif self.attention_score_raw > 100:
            logger.warning(
                "Unusually high attention score: {}",
                self.attention_score_raw,
                extra={"packet_id": self.packet_id},
            )
        return self


class PacketPayload(HiNATACore):
    """HiNATA payload of a capture, owned by a user."""

    user_id: str = Field(..., min_length=1)
    content_format: ContentFormat = ContentFormat.PLAIN_TEXT
    attachments: list[Attachment] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict, description="Free-form payload metadata")


class Packet(BaseModel):
    """
    A stored capture packet.

    ``created_at`` and ``updated_at`` are stamped by the packet store.
    """

    metadata: PacketMetadata = Field(default_factory=PacketMetadata)
    payload: PacketPayload
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def id(self) -> str:
        return self.metadata.packet_id

    @property
    def user_id(self) -> str:
        return self.payload.user_id

    @property
    def attention_score(self) -> float:
        return self.metadata.attention_score_raw or 0.0

    @property
    def device_type(self) -> str:
        return self.metadata.device_context.device_type or "unknown"

    def text_blob(self) -> str:
        return self.payload.text_blob()


def create_packet(
    highlight: str,
    note: str,
    at: str,
    user_id: str,
    tag: list[str] | None = None,
    access: AccessLevel = AccessLevel.PRIVATE,
    capture_source: CaptureSource = CaptureSource.MANUAL_INPUT,
    user_action: UserAction = UserAction.QUICK_SAVE,
    **metadata: Any,
) -> Packet:
    """
    Build a packet from HiNATA fields with builder defaults.

    Extra keyword arguments are passed to ``PacketMetadata``
    (``packet_id``, ``capture_timestamp``, ``device_context``, ...).

    Raises:
        pydantic.ValidationError: If any field is invalid
    """
    return Packet(
        metadata=PacketMetadata(
            capture_source=capture_source,
            user_action=user_action,
            **metadata,
        ),
        payload=PacketPayload(
            highlight=highlight,
            note=note,
            at=at,
            tag=tag or [],
            access=access,
            user_id=user_id,
        ),
    )
