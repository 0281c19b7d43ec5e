"""Structural parsing of LINE webhook deliveries.

A delivery is ``{"destination": "...", "events": [...]}``. The whole batch is
validated before anything is returned: one bad event rejects the delivery.
Event types and message kinds the bot does not handle become ``OtherEvent``.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.webhook.models import (
    Event,
    MessageEvent,
    MessageKind,
    OtherEvent,
    PostbackEvent,
    VerifiedBody,
)


class MalformedPayloadError(Exception):
    """Raised when a verified body does not match the webhook schema."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Malformed webhook payload: {detail}")


# --- Wire schema (camelCase, as LINE sends it) ---


class _Source(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    user_id: str | None = Field(default=None, alias="userId")


class _Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    text: str | None = None


class _Postback(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: str


class _BaseEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    timestamp: int | None = None


class _MessageEnvelope(_BaseEvent):
    reply_token: str = Field(alias="replyToken")
    source: _Source
    message: _Message


class _PostbackEnvelope(_BaseEvent):
    reply_token: str = Field(alias="replyToken")
    source: _Source
    postback: _Postback


class _Delivery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: str | None = None
    events: list[dict[str, Any]]


_SUPPORTED_KINDS = {kind.value: kind for kind in MessageKind}


def _to_message_event(raw: dict[str, Any]) -> Event:
    envelope = _MessageEnvelope.model_validate(raw)
    kind = _SUPPORTED_KINDS.get(envelope.message.type)
    if kind is None:
        return OtherEvent(event_type=f"message:{envelope.message.type}")
    if kind is MessageKind.TEXT and envelope.message.text is None:
        raise MalformedPayloadError("text message without text")
    return MessageEvent(
        sender_id=envelope.source.user_id,
        reply_token=envelope.reply_token,
        message_id=envelope.message.id,
        message_kind=kind,
        text=envelope.message.text,
        timestamp=envelope.timestamp,
    )


def _to_postback_event(raw: dict[str, Any]) -> Event:
    envelope = _PostbackEnvelope.model_validate(raw)
    return PostbackEvent(
        sender_id=envelope.source.user_id,
        reply_token=envelope.reply_token,
        data=envelope.postback.data,
        timestamp=envelope.timestamp,
    )


def parse_events(body: VerifiedBody) -> list[Event]:
    """Parse a verified delivery into typed events, all or nothing."""
    if not isinstance(body, VerifiedBody):
        raise TypeError("parse_events requires a VerifiedBody")

    try:
        document = json.loads(body.data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayloadError(f"invalid JSON: {exc}") from exc
    except RecursionError as exc:
        raise MalformedPayloadError("invalid JSON: nesting too deep") from exc

    try:
        delivery = _Delivery.model_validate(document)
        events: list[Event] = []
        for index, raw in enumerate(delivery.events):
            event_type = raw.get("type")
            if not isinstance(event_type, str):
                raise MalformedPayloadError(f"event {index} has no string 'type'")
            if event_type == "message":
                events.append(_to_message_event(raw))
            elif event_type == "postback":
                events.append(_to_postback_event(raw))
            else:
                events.append(OtherEvent(event_type=event_type))
    except ValidationError as exc:
        raise MalformedPayloadError(str(exc)) from exc

    return events
