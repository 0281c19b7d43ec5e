"""Data models for the LINE webhook pipeline.

Inbound side: ``WebhookRequest`` -> ``VerifiedBody`` -> ``Event`` union.
Outbound side: reply message objects collected in a ``ReplyPayload``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Inbound ---

_MINT = object()


@dataclass(frozen=True)
class WebhookRequest:
    """One inbound HTTP delivery, exactly as received."""

    body: bytes
    signature: str | None
    content_type: str = "application/json"


class VerifiedBody:
    """Raw body bytes that passed signature verification.

    Instances are minted by ``SignatureVerifier.verify`` only; the parser
    refuses anything else.
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes, *, _token: object) -> None:
        if _token is not _MINT:
            raise TypeError("VerifiedBody can only be created by SignatureVerifier")
        self._data = data

    @property
    def data(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return len(self._data)


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class MessageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    sender_id: str | None
    reply_token: str
    message_id: str
    message_kind: MessageKind
    text: str | None = None
    timestamp: int | None = None


class PostbackEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["postback"] = "postback"
    sender_id: str | None
    reply_token: str
    data: str
    timestamp: int | None = None


class OtherEvent(BaseModel):
    """Any event the bot does not act on (follow, join, stickers, ...)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["other"] = "other"
    event_type: str


Event = MessageEvent | PostbackEvent | OtherEvent


# --- Outbound ---


class TextMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImageMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["image"] = "image"
    original_content_url: str = Field(alias="originalContentUrl")
    preview_image_url: str = Field(alias="previewImageUrl")


class PostbackAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["postback"] = "postback"
    label: str
    data: str


class ButtonsTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["buttons"] = "buttons"
    text: str
    actions: list[PostbackAction] = Field(min_length=1, max_length=4)


class TemplateMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["template"] = "template"
    alt_text: str = Field(alias="altText")
    template: ButtonsTemplate


OutboundMessage = TextMessage | ImageMessage | TemplateMessage


class ReplyPayload(BaseModel):
    """Body of a LINE reply API call. LINE accepts at most five messages."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reply_token: str = Field(alias="replyToken", min_length=1)
    messages: list[OutboundMessage] = Field(min_length=1, max_length=5)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)
