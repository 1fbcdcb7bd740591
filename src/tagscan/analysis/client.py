"""
Analysis Service client.

Posts one SubmissionRequest to {base_url}/api/analyze with the caller's
bearer token. Submissions are never retried automatically: a payload-too-large
answer is surfaced so the caller can drop items and try again.
"""

import logging

import httpx
from pydantic import ValidationError

from tagscan.analysis.result import AnalysisResult
from tagscan.errors import AnalysisServiceError, PayloadTooLargeError
from tagscan.models import SubmissionRequest

logger = logging.getLogger(__name__)


class AnalysisClient:
    """HTTP client for the external valuation service."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._submissions = 0

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/api/analyze"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def analyze(self, request: SubmissionRequest, token: str) -> AnalysisResult:
        """
        Submit a request and parse the valuation.

        Raises:
            PayloadTooLargeError: HTTP 413 or a PAYLOAD_TOO_LARGE error body
            AnalysisServiceError: Any other non-2xx response or transport failure
        """
        if not token:
            raise AnalysisServiceError("No credential token provided")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        self._submissions += 1
        logger.info(f"Submitting {len(request.items)} item(s) to {self.endpoint}")

        try:
            r = await self._get_client().post(
                self.endpoint, json=request.to_payload(), headers=headers
            )
        except httpx.TimeoutException as e:
            raise AnalysisServiceError(f"Analysis request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"Analysis request failed: {e}") from e

        if r.status_code == 413 or (r.status_code >= 400 and "PAYLOAD_TOO_LARGE" in r.text):
            logger.warning(f"Analysis service rejected payload as too large ({r.status_code})")
            raise PayloadTooLargeError("Image too large. Try fewer or smaller items.")

        if not r.is_success:
            logger.error(f"Analysis failed: HTTP {r.status_code}: {r.text[:200]}")
            raise AnalysisServiceError(f"Analysis failed: {r.status_code}", status_code=r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            raise AnalysisServiceError(
                "Analysis service returned invalid JSON", status_code=r.status_code
            ) from e

        try:
            result = AnalysisResult.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected analysis response: {e}")
            raise AnalysisServiceError(
                "Analysis service returned an unexpected response", status_code=r.status_code
            ) from e
        logger.info(
            f"Analysis complete: {result.item_name} ~ ${result.estimated_value:.2f} "
            f"({result.decision.value}, {len(result.consensus_votes)} vote(s))"
        )
        return result

    def get_status(self) -> dict:
        return {"endpoint": self.endpoint, "submissions": self._submissions}

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# Factory function
def _create_default_client() -> AnalysisClient:
    """Create analysis client from config."""
    from tagscan.config import analysis_config

    return AnalysisClient(
        base_url=analysis_config.base_url,
        timeout_seconds=analysis_config.timeout_seconds,
    )
