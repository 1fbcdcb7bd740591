"""
Durable Storage - user-scoped object storage over HTTP

Talks to a Supabase-style storage REST API:
- POST   {base}/storage/v1/object/{bucket}/{path}   (upsert)
- DELETE {base}/storage/v1/object/{bucket}/{path}
- GET    {base}/storage/v1/bucket/{bucket}          (health)
- public URL {base}/storage/v1/object/public/{bucket}/{path}

Connection errors, timeouts and 5xx responses are retried with exponential
backoff via tenacity. 4xx responses fail immediately.
"""

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from tagscan.errors import UploadError

logger = logging.getLogger(__name__)


class TransientStorageError(Exception):
    """5xx from the storage service; retried."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"Storage service returned HTTP {status_code}: {detail}")
        self.status_code = status_code


_RETRY_EXCEPTIONS = (httpx.TransportError, TransientStorageError)


class DurableStorage:
    """
    Storage client for original media.

    Args:
        base_url: Storage service base URL
        bucket: Bucket name
        api_key: Project API key (also used as bearer when no user token is given)
        timeout_seconds: Per-request timeout
        retry_attempts: Attempts per request on transient failures
        retry_wait: tenacity wait strategy between attempts
        client: Shared httpx.AsyncClient (created lazily if None)
    """

    def __init__(
        self,
        base_url: str,
        bucket: str = "user-uploads",
        api_key: str = "",
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        retry_wait: wait_base | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._client = client
        self._owns_client = client is None

        self._uploads = 0
        self._failures = 0

        if not self.base_url:
            logger.warning("No storage base URL configured - durable uploads disabled")
        else:
            logger.info(f"Durable storage initialized: {self.base_url} bucket={bucket}")

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {}
        bearer = token or self.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        if self.api_key:
            headers["apikey"] = self.api_key
        return headers

    def object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    def path_from_public_url(self, url: str) -> str | None:
        prefix = self.public_url("")
        if not url.startswith(prefix):
            return None
        return url[len(prefix):] or None

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(_RETRY_EXCEPTIONS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _post_object(
        self, path: str, blob: bytes, content_type: str, token: str | None
    ) -> None:
        headers = self._headers(token)
        headers["Content-Type"] = content_type
        headers["x-upsert"] = "true"
        r = await self._get_client().post(self.object_url(path), content=blob, headers=headers)
        if r.status_code >= 500:
            raise TransientStorageError(r.status_code, r.text[:200])
        if r.status_code >= 400:
            raise UploadError(f"Storage rejected upload ({r.status_code}): {r.text[:200]}")

    async def upload(
        self,
        path: str,
        blob: bytes,
        content_type: str = "image/jpeg",
        token: str | None = None,
    ) -> str:
        """
        Upload one object (upsert) and return its public URL.

        Raises:
            UploadError: Rejected by the service or still failing after retries
        """
        if not self.enabled:
            raise UploadError("Durable storage is not configured")
        if not blob:
            raise UploadError(f"No data to upload for {path}")

        logger.debug(f"Uploading {path} ({len(blob) / 1024:.1f}KB, {content_type})")
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._post_object(path, blob, content_type, token)
        except UploadError:
            self._failures += 1
            raise
        except _RETRY_EXCEPTIONS as e:
            self._failures += 1
            raise UploadError(
                f"Upload of {path} failed after {self.retry_attempts} attempt(s): {e}"
            ) from e

        self._uploads += 1
        url = self.public_url(path)
        logger.info(f"Uploaded {path} -> {url}")
        return url

    async def delete(self, url: str, token: str | None = None) -> bool:
        """Delete an object by its public URL. Returns False on failure."""
        path = self.path_from_public_url(url)
        if path is None:
            logger.warning(f"Not a URL in bucket '{self.bucket}': {url}")
            return False
        try:
            r = await self._get_client().delete(self.object_url(path), headers=self._headers(token))
        except httpx.HTTPError as e:
            logger.error(f"Delete of {path} failed: {e}")
            return False
        if r.status_code >= 400:
            logger.error(f"Delete of {path} failed: HTTP {r.status_code}")
            return False
        logger.info(f"Deleted {path}")
        return True

    async def check_health(self) -> bool:
        """True if the bucket is reachable."""
        if not self.enabled:
            return False
        try:
            r = await self._get_client().get(
                f"{self.base_url}/storage/v1/bucket/{self.bucket}",
                headers=self._headers(None),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Storage health check failed: {e}")
            return False
        healthy = r.status_code == 200
        if not healthy:
            logger.warning(f"Storage health check returned HTTP {r.status_code}")
        return healthy

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "bucket": self.bucket,
            "uploads": self._uploads,
            "failures": self._failures,
        }

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# Factory function
def _create_default_storage() -> DurableStorage:
    """Create durable storage client from config."""
    from tagscan.config import storage_config

    return DurableStorage(
        base_url=storage_config.base_url,
        bucket=storage_config.bucket,
        api_key=storage_config.api_key,
        timeout_seconds=storage_config.timeout_seconds,
        retry_attempts=storage_config.retry_attempts,
    )
