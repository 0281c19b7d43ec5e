"""FastAPI application exposing the LINE webhook endpoint."""

from __future__ import annotations

import logging
import os

from fastapi import BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.storage.gcs import GCSStorage
from src.webhook.admin import AdminSet, AuthorizationGate
from src.webhook.dispatcher import EventDispatcher
from src.webhook.media import LineMediaClient
from src.webhook.models import WebhookRequest
from src.webhook.parser import MalformedPayloadError, parse_events
from src.webhook.presets import Presets, load_presets_from_file
from src.webhook.reply import LineReplyClient, ReplyComposer
from src.webhook.signature import SIGNATURE_HEADER, AuthenticationError, SignatureVerifier

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    channel_secret = os.environ["LINE_CHANNEL_SECRET"]
    access_token = os.environ["LINE_CHANNEL_ACCESS_TOKEN"]
    bucket = os.environ["GCS_BUCKET"]
    admins = AdminSet.from_csv(os.environ.get("ADMIN_USER_IDS", ""))
    timeout = float(os.environ.get("LINE_API_TIMEOUT", "10"))

    presets_path = os.environ.get("PRESETS_PATH")
    presets = load_presets_from_file(presets_path) if presets_path else Presets()

    audit_log = os.environ.get("AUDIT_LOG_PATH")
    audit_logger = AuditLogger.from_env(audit_log) if audit_log else None

    dispatcher = EventDispatcher(
        composer=ReplyComposer(LineReplyClient(access_token, timeout=timeout)),
        gate=AuthorizationGate(admins),
        media=LineMediaClient(access_token, timeout=timeout),
        storage=GCSStorage(),
        bucket=bucket,
        presets=presets,
        audit_logger=audit_logger,
    )
    logger.info(
        "LINE webhook configured: bucket=%s admins=%d presets=%d",
        bucket, len(admins), len(presets),
    )
    return create_app(SignatureVerifier(channel_secret), dispatcher, audit_logger)


def create_app(
    verifier: SignatureVerifier,
    dispatcher: EventDispatcher,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the webhook app around an already wired verifier and dispatcher."""
    app = FastAPI(docs_url=None, redoc_url=None)

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "ok"

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook")
    async def webhook(request: Request, background: BackgroundTasks) -> Response:
        webhook_request = WebhookRequest(
            body=await request.body(),
            signature=request.headers.get(SIGNATURE_HEADER),
            content_type=request.headers.get("content-type", ""),
        )
        source_ip = request.client.host if request.client else None

        try:
            verified = verifier.verify(webhook_request)
        except AuthenticationError as exc:
            logger.warning("Rejected webhook from %s: %s", source_ip, exc.reason)
            _log_rejection(
                audit_logger, AuditEventType.SIGNATURE_REJECTED, source_ip,
                RiskLevel.HIGH, exc.reason,
            )
            return JSONResponse({"error": "Invalid webhook signature"}, status_code=401)

        try:
            events = parse_events(verified)
        except MalformedPayloadError as exc:
            logger.warning("Malformed webhook payload from %s: %s", source_ip, exc.detail)
            _log_rejection(
                audit_logger, AuditEventType.PAYLOAD_REJECTED, source_ip,
                RiskLevel.MEDIUM, exc.detail,
            )
            return JSONResponse({"error": "Malformed webhook payload"}, status_code=400)

        logger.info("Received %d event(s)", len(events))
        # Runs after the 200 is sent; a client disconnect does not cancel it
        background.add_task(dispatcher.dispatch, events)
        return JSONResponse({"status": "ok"}, status_code=200)

    return app


def _log_rejection(
    audit_logger: AuditLogger | None,
    event_type: AuditEventType,
    source_ip: str | None,
    risk_level: RiskLevel,
    reason: str,
) -> None:
    if not audit_logger:
        return
    try:
        audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=source_ip,
            action="POST /webhook",
            result="blocked",
            risk_level=risk_level,
            details={"reason": reason[:500]},
        ))
    except OSError:
        logger.exception("Failed to write audit event %s", event_type.value)
