"""HTTP client for the gig data platform API."""

import uuid

import httpx
from pydantic import ValidationError

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.integrations.gig_platform.token_provider import AccessTokenProvider
from gigsync.models.api.gig_platform_api import RequestLatestResult

logger = get_logger(__name__)


class GigPlatformApiError(Exception):
    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.recoverable = recoverable


class GigPlatformApiClient:
    def __init__(
        self,
        token_provider: AccessTokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
    ):
        self.token_provider = token_provider or AccessTokenProvider()
        self.base_url = base_url or settings.GIG_PLATFORM_API_URL
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(settings.PLATFORM_API_TIMEOUT_SECONDS),
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self.token_provider.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request_latest(self, external_platform_id: uuid.UUID, user_name: str) -> RequestLatestResult:
        """
        Ask the platform to fetch the latest data for a user.

        The data itself arrives later as a callback carrying the returned request id.

        Raises:
            GigPlatformApiError: On network errors, non-success status or an unreadable body
        """
        payload = {"userName": user_name, "platformId": str(external_platform_id)}

        try:
            response = await self.http_client.post(
                "platform/latest", json=payload, headers=await self._auth_headers()
            )
        except httpx.RequestError as e:
            logger.error(
                "Network error calling gig platform API",
                external_platform_id=str(external_platform_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GigPlatformApiError(
                f"Network error requesting latest data: {e}", operation="request_latest"
            ) from e

        if response.status_code == 401:
            # Force a fresh token on the next attempt
            self.token_provider.invalidate()

        if not response.is_success:
            logger.error(
                "Gig platform API returned non-success status",
                external_platform_id=str(external_platform_id),
                status_code=response.status_code,
            )
            raise GigPlatformApiError(
                f"Gig platform API returned status {response.status_code}",
                operation="request_latest",
                status_code=response.status_code,
            )

        try:
            return RequestLatestResult.model_validate_json(response.content)
        except ValidationError as e:
            raise GigPlatformApiError(
                f"Unreadable request-latest response: {e}",
                operation="request_latest",
                status_code=response.status_code,
                recoverable=False,
            ) from e
