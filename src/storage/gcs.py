"""Object storage on Google Cloud Storage.

The google-cloud-storage SDK is synchronous, so every call runs in
``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from google.api_core import exceptions as gcs_exceptions

if TYPE_CHECKING:
    from google.cloud.storage import Client as GCSClient

logger = logging.getLogger(__name__)

PUBLIC_URL_BASE = "https://storage.googleapis.com"


class StorageError(Exception):
    """Raised when an object storage operation fails."""

    def __init__(self, operation: str, key: str, reason: str) -> None:
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f"Storage {operation} failed for {key}: {reason}")


class ObjectStorage(Protocol):
    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: str = "image/jpeg",
    ) -> None: ...

    async def copy_object(self, bucket: str, source: str, dest: str) -> None: ...


def public_url(bucket: str, key: str) -> str:
    return f"{PUBLIC_URL_BASE}/{bucket}/{key}"


class GCSStorage:
    """``ObjectStorage`` backed by a google-cloud-storage client."""

    def __init__(self, client: GCSClient | None = None) -> None:
        self._client = client

    def _get_client(self) -> GCSClient:
        if self._client is None:
            from google.cloud import storage

            self._client = storage.Client()
            logger.info("gcs_client_created")
        return self._client

    def _put_sync(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        blob = self._get_client().bucket(bucket).blob(key)
        blob.upload_from_string(data, content_type=content_type)

    def _copy_sync(self, bucket: str, source: str, dest: str) -> None:
        gcs_bucket = self._get_client().bucket(bucket)
        gcs_bucket.copy_blob(gcs_bucket.blob(source), gcs_bucket, dest)

    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: str = "image/jpeg",
    ) -> None:
        try:
            await asyncio.to_thread(self._put_sync, bucket, key, data, content_type)
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError("put", key, str(exc)) from exc
        logger.info("Stored gs://%s/%s (%d bytes)", bucket, key, len(data))

    async def copy_object(self, bucket: str, source: str, dest: str) -> None:
        try:
            await asyncio.to_thread(self._copy_sync, bucket, source, dest)
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError("copy", source, str(exc)) from exc
        logger.info("Copied gs://%s/%s to %s", bucket, source, dest)
