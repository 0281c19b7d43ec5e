"""Outbound replies through the LINE Messaging API.

Reply tokens expire within about a minute and are single use, so a failed
reply is reported once and never retried.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import httpx

from src.webhook.models import (
    ButtonsTemplate,
    ImageMessage,
    OutboundMessage,
    PostbackAction,
    ReplyPayload,
    TemplateMessage,
    TextMessage,
)

logger = logging.getLogger(__name__)

LINE_API_BASE = "https://api.line.me/v2/bot"
_DEFAULT_TIMEOUT = 10.0


class ReplyDeliveryError(Exception):
    """Raised when the reply API call fails, times out or is refused."""

    def __init__(self, reply_token: str, reason: str, status_code: int | None = None) -> None:
        self.reply_token = reply_token
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Reply delivery failed: {reason}")


class ReplyClient(Protocol):
    async def send_reply(self, payload: ReplyPayload) -> None: ...


class LineReplyClient:
    """Posts reply payloads to LINE, authenticated with the channel access token."""

    def __init__(
        self,
        access_token: str,
        api_base: str = LINE_API_BASE,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._access_token = access_token
        self._url = f"{api_base.rstrip('/')}/message/reply"
        self._timeout = timeout

    async def send_reply(self, payload: ReplyPayload) -> None:
        """Single attempt; any failure becomes ReplyDeliveryError."""
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload.to_wire(), headers=headers)
        except httpx.HTTPError as exc:
            raise ReplyDeliveryError(
                payload.reply_token, f"{type(exc).__name__}: {exc}",
            ) from exc

        if resp.status_code >= 400:
            raise ReplyDeliveryError(
                payload.reply_token,
                f"LINE returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        logger.info("Sent reply with %d message(s)", len(payload.messages))


class ReplyComposer:
    """Builds reply payloads and hands each to the reply client exactly once."""

    def __init__(self, client: ReplyClient) -> None:
        self._client = client

    async def reply(self, reply_token: str, messages: Sequence[OutboundMessage]) -> None:
        payload = ReplyPayload(reply_token=reply_token, messages=list(messages))
        await self._client.send_reply(payload)

    async def reply_text(self, reply_token: str, text: str) -> None:
        await self.reply(reply_token, [TextMessage(text=text)])

    async def reply_image(self, reply_token: str, image_url: str) -> None:
        await self.reply(reply_token, [image_message(image_url)])


def image_message(url: str) -> ImageMessage:
    return ImageMessage(original_content_url=url, preview_image_url=url)


def mapping_prompt(pending_id: str, keywords: Sequence[str], prompt: str) -> TemplateMessage:
    """Buttons asking which preset a freshly uploaded image should replace."""
    actions = [
        PostbackAction(label=keyword, data=f"pending={pending_id}&target={keyword}")
        for keyword in keywords
    ]
    return TemplateMessage(
        alt_text=prompt,
        template=ButtonsTemplate(text=prompt, actions=actions),
    )
