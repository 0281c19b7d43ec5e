"""Shared test fixtures for line-webhook-bot."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.admin import AdminSet, AuthorizationGate
from src.webhook.dispatcher import EventDispatcher
from src.webhook.presets import Presets
from src.webhook.reply import ReplyComposer

CHANNEL_SECRET = "test-channel-secret"
ADMIN_ID = "U_admin"
USER_ID = "U_user"
BUCKET = "test-bucket"
PENDING_ID = "8c1f0d4e-2b9a-4f55-9a43-0f3c2d1e7b6a"


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def reply_client() -> AsyncMock:
    client = AsyncMock()
    client.send_reply.return_value = None
    return client


@pytest.fixture
def media() -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch_media.return_value = b"\xff\xd8\xff jpeg bytes"
    return fetcher


@pytest.fixture
def storage() -> AsyncMock:
    store = AsyncMock()
    store.put_object.return_value = None
    store.copy_object.return_value = None
    return store


@pytest.fixture
def make_dispatcher(reply_client: AsyncMock, media: AsyncMock, storage: AsyncMock):
    """Build an EventDispatcher around the shared fakes."""

    def _create(**kwargs: Any) -> EventDispatcher:
        defaults: dict[str, Any] = {
            "composer": ReplyComposer(reply_client),
            "gate": AuthorizationGate(AdminSet([ADMIN_ID])),
            "media": media,
            "storage": storage,
            "bucket": BUCKET,
            "presets": Presets(),
            "id_factory": lambda: PENDING_ID,
        }
        defaults.update(kwargs)
        return EventDispatcher(**defaults)

    return _create


# --- Factory functions for test data ---


def make_message_event(
    message_type: str = "text",
    text: str | None = "hello",
    reply_token: str = "tok-1",
    user_id: str | None = USER_ID,
    message_id: str = "100001",
) -> dict[str, Any]:
    """Raw LINE message event as it appears on the wire."""
    message: dict[str, Any] = {"id": message_id, "type": message_type}
    if text is not None:
        message["text"] = text
    source: dict[str, Any] = {"type": "user"}
    if user_id is not None:
        source["userId"] = user_id
    return {
        "type": "message",
        "mode": "active",
        "timestamp": 1700000000000,
        "webhookEventId": "01HXYZ",
        "deliveryContext": {"isRedelivery": False},
        "replyToken": reply_token,
        "source": source,
        "message": message,
    }


def make_postback_event(
    data: str, reply_token: str = "tok-pb", user_id: str | None = ADMIN_ID,
) -> dict[str, Any]:
    return {
        "type": "postback",
        "timestamp": 1700000000000,
        "replyToken": reply_token,
        "source": {"type": "user", "userId": user_id},
        "postback": {"data": data},
    }


def make_delivery(*events: dict[str, Any]) -> bytes:
    return json.dumps({"destination": "Uxxxxxxxx", "events": list(events)}).encode()


def make_audit_event(**kwargs: object) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, object] = {
        "event_type": AuditEventType.SIGNATURE_REJECTED,
        "action": "POST /webhook",
        "result": "blocked",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]
