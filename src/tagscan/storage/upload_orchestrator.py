"""
Upload Orchestrator

Persists the original (pre-compression) media of selected items to durable
storage, one item at a time. A failed item is logged and skipped; the batch
never aborts, and the returned URLs keep the relative order of successes.
"""

import logging
import time
from typing import Callable

import httpx

from tagscan.errors import UploadError
from tagscan.models import CapturedItem, UploadProgress
from tagscan.storage.durable_storage import DurableStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


class UploadOrchestrator:
    """Sequential batch uploads of original item payloads."""

    def __init__(
        self,
        storage: DurableStorage,
        clock: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self._storage = storage
        self._clock = clock
        self._last_failures = 0

    @property
    def last_failures(self) -> int:
        """Number of items that failed in the most recent batch."""
        return self._last_failures

    @staticmethod
    def object_path(owner_id: str, timestamp_ms: int, index: int) -> str:
        """Storage path; the extension is always .jpg, the real type travels as Content-Type."""
        return f"{owner_id}/{timestamp_ms}_{index}.jpg"

    async def upload_all(
        self,
        items: list[CapturedItem],
        owner_id: str,
        on_progress: ProgressCallback | None = None,
        token: str | None = None,
    ) -> list[str]:
        """
        Upload each item's original payload in order.

        Args:
            items: Items to persist
            owner_id: Owner identifier, used as the path prefix
            on_progress: Called before each item and once at the end
            token: Caller credential forwarded to storage

        Returns:
            Public URLs of the successful uploads, in item order

        Raises:
            UploadError: If owner_id is empty (before any network call)
        """
        if not owner_id or not owner_id.strip():
            raise UploadError("No owner id provided")

        self._last_failures = 0
        if not items:
            logger.debug("No items to upload")
            return []

        total = len(items)
        logger.info(f"Uploading {total} item(s) for owner {owner_id}")
        urls: list[str] = []
        errors: list[str] = []

        for index, item in enumerate(items):
            if on_progress:
                on_progress(UploadProgress(uploaded=index, total=total, current_name=item.name))

            content_type = item.upload_content_type
            path = self.object_path(owner_id, self._clock(), index)

            try:
                url = await self._storage.upload(
                    path, item.upload_payload, content_type=content_type, token=token
                )
            except (UploadError, httpx.HTTPError) as e:
                errors.append(f"Item {index} ({item.name}): {e}")
                logger.warning(f"Upload failed for item {index} ({item.name}): {e}")
                continue
            urls.append(url)

        if on_progress:
            on_progress(UploadProgress(uploaded=total, total=total))

        self._last_failures = len(errors)
        logger.info(f"Upload complete: {len(urls)}/{total} succeeded")
        if errors:
            logger.warning(f"Upload errors: {errors}")
        return urls
