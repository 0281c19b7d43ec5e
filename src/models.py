"""Shared Pydantic data models for line-webhook-bot."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# --- Enums ---


class AuditEventType(str, Enum):
    SIGNATURE_REJECTED = "signature_rejected"
    PAYLOAD_REJECTED = "payload_rejected"
    UNAUTHORIZED_ACTION = "unauthorized_action"
    IMAGE_UPLOADED = "image_uploaded"
    PRESET_UPDATED = "preset_updated"
    REPLY_FAILED = "reply_failed"
    EVENT_FAILED = "event_failed"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    user_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked" | "ignored"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
