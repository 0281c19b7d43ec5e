"""Event dispatcher: routes each parsed event to its reply or upload path.

Events of one delivery are handled strictly in order. A failure while
handling one event is logged, recorded in the ``DispatchReport`` and does not
stop the remaining events.

Routing:
- text message: preset keyword -> image reply, anything else -> echo
- image message (admins only): fetch, store under ``uploads/``, then ask
  which preset it should replace (or confirm when no presets exist)
- postback (admins only): bind a pending upload to a preset
- everything else: ignored
Non-admin image and postback events are dropped without any reply.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qs

from src.models import AuditEvent, AuditEventType, RiskLevel
from src.storage.gcs import ObjectStorage, StorageError, public_url
from src.webhook.admin import AuthorizationGate, UnauthorizedActionError
from src.webhook.media import MediaFetcher, MediaFetchError
from src.webhook.models import (
    Event,
    MessageEvent,
    MessageKind,
    OtherEvent,
    OutboundMessage,
    PostbackEvent,
    TextMessage,
)
from src.webhook.presets import Presets
from src.webhook.reply import ReplyComposer, ReplyDeliveryError, image_message, mapping_prompt

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "uploads"
MAPPING_PROMPT_TEXT = "Which preset should this image replace?"
UPLOAD_DONE_TEXT = "Image uploaded."
PRESET_NOT_FOUND_TEXT = "The selected preset was not found."
_MAX_TEMPLATE_ACTIONS = 4


def pending_object_key(pending_id: str) -> str:
    return f"{UPLOAD_PREFIX}/{pending_id}.jpg"


def _is_upload_id(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


@dataclass
class EventFailure:
    index: int
    event_kind: str
    error: str


@dataclass
class DispatchReport:
    handled: int = 0
    ignored: int = 0
    failures: list[EventFailure] = field(default_factory=list)


class EventDispatcher:
    def __init__(
        self,
        composer: ReplyComposer,
        gate: AuthorizationGate,
        media: MediaFetcher,
        storage: ObjectStorage,
        bucket: str,
        presets: Presets | None = None,
        audit_logger: AuditLogger | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._composer = composer
        self._gate = gate
        self._media = media
        self._storage = storage
        self._bucket = bucket
        self._presets = presets if presets is not None else Presets({})
        self._audit = audit_logger
        self._new_id = id_factory

    async def dispatch(self, events: Sequence[Event]) -> DispatchReport:
        report = DispatchReport()
        used_tokens: set[str] = set()

        for index, event in enumerate(events):
            try:
                acted = await self._handle(event, used_tokens)
            except UnauthorizedActionError as exc:
                logger.info("Ignoring %s from non-admin sender %s", exc.action, exc.sender_id)
                self._log_audit(
                    AuditEventType.UNAUTHORIZED_ACTION, exc.action, "ignored",
                    RiskLevel.MEDIUM, user_id=exc.sender_id,
                )
                report.ignored += 1
                continue
            except ReplyDeliveryError as exc:
                logger.error("Reply for event %d failed: %s", index, exc.reason)
                self._log_audit(
                    AuditEventType.REPLY_FAILED, event.kind, "failure", RiskLevel.LOW,
                    details={"index": index, "reason": exc.reason, "status": exc.status_code},
                )
                report.failures.append(EventFailure(index, event.kind, str(exc)))
                continue
            except (MediaFetchError, StorageError) as exc:
                logger.error("Event %d failed: %s", index, exc)
                self._log_audit(
                    AuditEventType.EVENT_FAILED, event.kind, "failure", RiskLevel.MEDIUM,
                    details={"index": index, "error": str(exc)},
                )
                report.failures.append(EventFailure(index, event.kind, str(exc)))
                continue
            except Exception as exc:
                # One broken event must not take the rest of the batch with it
                logger.exception("Unexpected error handling event %d", index)
                self._log_audit(
                    AuditEventType.EVENT_FAILED, event.kind, "failure", RiskLevel.HIGH,
                    details={"index": index, "error": repr(exc)},
                )
                report.failures.append(EventFailure(index, event.kind, repr(exc)))
                continue

            if acted:
                report.handled += 1
            else:
                report.ignored += 1

        logger.info(
            "Dispatched %d event(s): handled=%d ignored=%d failed=%d",
            len(events), report.handled, report.ignored, len(report.failures),
        )
        return report

    async def _handle(self, event: Event, used_tokens: set[str]) -> bool:
        if isinstance(event, MessageEvent):
            if event.message_kind is MessageKind.TEXT:
                return await self._handle_text(event, used_tokens)
            if event.message_kind is MessageKind.IMAGE:
                return await self._handle_image(event, used_tokens)
            return False
        if isinstance(event, PostbackEvent):
            return await self._handle_postback(event, used_tokens)
        if isinstance(event, OtherEvent):
            logger.debug("Ignoring event of type %s", event.event_type)
            return False
        raise TypeError(f"Unhandled event type: {type(event).__name__}")

    @staticmethod
    def _claim_token(reply_token: str, used_tokens: set[str]) -> bool:
        if reply_token in used_tokens:
            logger.warning("Reply token already used in this delivery; skipping reply")
            return False
        used_tokens.add(reply_token)
        return True

    async def _handle_text(self, event: MessageEvent, used_tokens: set[str]) -> bool:
        text = (event.text or "").strip()
        if not text:
            return False
        if not self._claim_token(event.reply_token, used_tokens):
            return False
        object_key = self._presets.get(text)
        if object_key is not None:
            url = public_url(self._bucket, object_key)
            await self._composer.reply_image(event.reply_token, url)
        else:
            await self._composer.reply_text(event.reply_token, text)
        return True

    async def _handle_image(self, event: MessageEvent, used_tokens: set[str]) -> bool:
        self._gate.require_admin(event.sender_id, "image_upload")

        content = await self._media.fetch_media(event.message_id)
        pending_id = self._new_id()
        key = pending_object_key(pending_id)
        await self._storage.put_object(self._bucket, key, content)
        self._log_audit(
            AuditEventType.IMAGE_UPLOADED, "image_upload", "success", RiskLevel.INFO,
            user_id=event.sender_id, details={"object": key, "bytes": len(content)},
        )

        if self._presets:
            keywords = list(self._presets)[:_MAX_TEMPLATE_ACTIONS]
            reply: OutboundMessage = mapping_prompt(pending_id, keywords, MAPPING_PROMPT_TEXT)
        else:
            reply = TextMessage(text=UPLOAD_DONE_TEXT)
        if self._claim_token(event.reply_token, used_tokens):
            await self._composer.reply(event.reply_token, [reply])
        return True

    async def _handle_postback(self, event: PostbackEvent, used_tokens: set[str]) -> bool:
        self._gate.require_admin(event.sender_id, "preset_update")

        params = parse_qs(event.data)
        pending_id = params.get("pending", [None])[0]
        target = params.get("target", [None])[0]
        if not pending_id or not target:
            logger.debug("Postback without pending/target: %r", event.data)
            return False
        if not _is_upload_id(pending_id):
            logger.warning("Postback with invalid pending id: %r", pending_id)
            return False

        target_key = self._presets.get(target)
        if target_key is None:
            if self._claim_token(event.reply_token, used_tokens):
                await self._composer.reply_text(event.reply_token, PRESET_NOT_FOUND_TEXT)
            return True

        await self._storage.copy_object(self._bucket, pending_object_key(pending_id), target_key)
        self._log_audit(
            AuditEventType.PRESET_UPDATED, "preset_update", "success", RiskLevel.INFO,
            user_id=event.sender_id, details={"preset": target, "pending": pending_id},
        )
        # Both messages share one payload: the reply token is single use
        if self._claim_token(event.reply_token, used_tokens):
            await self._composer.reply(
                event.reply_token,
                [
                    TextMessage(text=f"Updated image for {target}."),
                    image_message(public_url(self._bucket, target_key)),
                ],
            )
        return True

    def _log_audit(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        risk_level: RiskLevel,
        user_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if not self._audit:
            return
        # Audit is best effort: a full disk must not abort the rest of the batch
        try:
            self._audit.log(AuditEvent(
                event_type=event_type,
                user_id=user_id,
                action=action,
                result=result,
                risk_level=risk_level,
                details=details,
            ))
        except OSError:
            logger.exception("Failed to write audit event %s", event_type.value)
