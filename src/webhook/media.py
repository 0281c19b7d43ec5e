"""Download of message content (images) from the LINE data API."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

LINE_DATA_API_BASE = "https://api-data.line.me/v2/bot"


class MediaFetchError(Exception):
    """Raised when message content cannot be downloaded."""

    def __init__(self, message_id: str, reason: str) -> None:
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"Failed to fetch content for message {message_id}: {reason}")


class MediaFetcher(Protocol):
    async def fetch_media(self, message_id: str) -> bytes: ...


class LineMediaClient:
    def __init__(
        self,
        access_token: str,
        api_base: str = LINE_DATA_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self._access_token = access_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    async def fetch_media(self, message_id: str) -> bytes:
        url = f"{self._api_base}/message/{message_id}/content"
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise MediaFetchError(message_id, f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code >= 400:
            raise MediaFetchError(message_id, f"status={resp.status_code}")
        logger.debug("Fetched %d bytes for message %s", len(resp.content), message_id)
        return resp.content
