from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from socialchat.core.errors import ValidationError
from socialchat.models.message import MessageKind
from socialchat.schemas.user import UserSummary


class TextPayload(BaseModel):

    model_config = ConfigDict(extra="forbid")

    kind: Literal["text"] = "text"
    content: str = Field(min_length=1, max_length=5000)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message content cannot be empty")
        return value


class ImagePayload(BaseModel):

    model_config = ConfigDict(extra="forbid")

    kind: Literal["image"] = "image"
    media_ref: str = Field(min_length=1)


class VideoPayload(BaseModel):

    model_config = ConfigDict(extra="forbid")

    kind: Literal["video"] = "video"
    media_ref: str = Field(min_length=1)


MessagePayload = Annotated[Union[TextPayload, ImagePayload, VideoPayload], Field(discriminator="kind")]

_payload_adapter: TypeAdapter = TypeAdapter(MessagePayload)


def build_payload(kind: Optional[str], content: Optional[str] = None, media_ref: Optional[str] = None):
    """
    Validate a kind/content/media combination into one tagged payload.

    Content and a media reference are mutually exclusive; supplying both is
    rejected rather than silently dropping one of them.
    """
    if kind is None:
        kind = "text" if media_ref is None else None
    if kind is None:
        raise ValidationError("Message kind is required for media messages")
    raw = {"kind": kind}
    if content is not None:
        raw["content"] = content
    if media_ref is not None:
        raw["media_ref"] = media_ref
    try:
        return _payload_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        if first["type"] == "extra_forbidden":
            raise ValidationError(f"'{first['loc'][-1]}' is not allowed for {kind} messages") from exc
        if first["type"] == "missing":
            raise ValidationError(f"'{first['loc'][-1]}' is required for {kind} messages") from exc
        if first["type"] == "union_tag_invalid":
            raise ValidationError(f"Unknown message kind: {kind}") from exc
        raise ValidationError(first["msg"]) from exc


class MessageOut(BaseModel):
    """A message with its sender resolved, as returned and published."""

    id: str
    conversation_id: str
    sender: UserSummary
    kind: MessageKind
    content: Optional[str] = None
    media_ref: Optional[str] = None
    media_url: Optional[str] = None
    read_by: List[str] = Field(default_factory=list)
    created_at: datetime


class MessagePage(BaseModel):

    items: List[MessageOut]
    next_cursor: Optional[str] = None


class SendMessageResponse(BaseModel):

    message: MessageOut
    partial: bool = False
    warnings: List[str] = Field(default_factory=list)
