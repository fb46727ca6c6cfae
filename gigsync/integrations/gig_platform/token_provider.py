"""
Client-credentials access token for the gig data platform API.

One provider instance is injected into the API client. It keeps the current
token and fetches a new one shortly before the old one expires.
"""

import asyncio
from datetime import datetime, timedelta

import httpx

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.domain.user_domain import utc_now

logger = get_logger(__name__)

EXPIRY_BUFFER_SECONDS = 60


class AccessTokenError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class AccessTokenProvider:
    def __init__(
        self,
        auth_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        audience: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock=utc_now,
    ):
        self.auth_url = auth_url if auth_url is not None else settings.GIG_PLATFORM_AUTH_URL
        self.client_id = client_id or settings.GIG_PLATFORM_CLIENT_ID
        self.client_secret = client_secret or settings.GIG_PLATFORM_CLIENT_SECRET
        self.audience = audience or settings.GIG_PLATFORM_AUDIENCE
        self._http_client = http_client
        self._clock = clock
        self._access_token: str | None = None
        self._expires_at: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.auth_url and self.client_id and self.client_secret)

    def _token_is_valid(self) -> bool:
        if self._access_token is None:
            return False
        if self._expires_at is None:
            return True
        return self._clock() + timedelta(seconds=EXPIRY_BUFFER_SECONDS) < self._expires_at

    async def get_access_token(self) -> str | None:
        """
        Current bearer token, fetching a new one when missing or about to expire.

        Returns None when no token endpoint is configured.

        Raises:
            AccessTokenError: If the token endpoint fails
        """
        if not self.is_configured:
            return None

        async with self._lock:
            if self._token_is_valid():
                return self._access_token
            await self._fetch_token()
            return self._access_token

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = None

    async def _fetch_token(self) -> None:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.audience:
            data["audience"] = self.audience

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.auth_url, data=data)
            else:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(settings.PLATFORM_API_TIMEOUT_SECONDS)
                ) as client:
                    response = await client.post(self.auth_url, data=data)
        except httpx.RequestError as e:
            logger.error(
                "Network error fetching gig platform access token",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AccessTokenError(
                f"Network error fetching access token: {e}", operation="fetch_token"
            ) from e

        if not response.is_success:
            logger.error(
                "Gig platform token endpoint returned non-success status",
                status_code=response.status_code,
            )
            raise AccessTokenError(
                f"Token endpoint returned status {response.status_code}",
                operation="fetch_token",
                recoverable=response.status_code >= 500,
            )

        body = response.json()
        access_token = body.get("access_token")
        if not access_token:
            raise AccessTokenError(
                "Token endpoint response has no access_token",
                operation="fetch_token",
                recoverable=False,
            )

        expires_in = body.get("expires_in")
        self._access_token = access_token
        self._expires_at = (
            self._clock() + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        logger.info("Gig platform access token refreshed", expires_in=expires_in)
