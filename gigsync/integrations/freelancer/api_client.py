"""
HTTP clients for the Freelancer REST API and its OAuth token endpoint.

A 401 from either one means the user's consent is gone and surfaces as
FreelancerUnauthorizedError. Everything else non-2xx is a FreelancerApiError.
"""

import httpx
from pydantic import ValidationError

from gigsync.config import settings
from gigsync.infrastructure.observability.logging import get_logger
from gigsync.models.api.freelancer_api import FreelancerReviewResponse, FreelancerUserInfoResponse
from gigsync.models.domain.user_domain import Token

logger = get_logger(__name__)

OAUTH_HEADER_NAME = "freelancer-oauth-v1"

USER_PROFILE_PATH = (
    "api/users/0.1/self/?jobs=true&reputation=true&badge_details=true&qualification_details=true"
)
REVIEWS_PATH = "api/projects/0.1/reviews/"


class FreelancerApiError(Exception):
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


class FreelancerUnauthorizedError(FreelancerApiError):
    """The stored token no longer grants access."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, operation=operation, status_code=401, recoverable=False)


def _check_response(response: httpx.Response, operation: str) -> None:
    if response.status_code == 401:
        raise FreelancerUnauthorizedError("Not authorized to access Freelancer", operation=operation)
    if not response.is_success:
        logger.error(
            "Freelancer returned non-success status",
            operation=operation,
            status_code=response.status_code,
        )
        raise FreelancerApiError(
            f"Freelancer returned status {response.status_code}",
            operation=operation,
            status_code=response.status_code,
        )


class FreelancerApiClient:
    def __init__(self, http_client: httpx.AsyncClient | None = None, base_url: str | None = None):
        self.base_url = base_url or settings.FREELANCER_API_URL
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

    async def _get(self, path: str, access_token: str, operation: str, params=None) -> httpx.Response:
        if not access_token:
            raise ValueError("Access token must be set before calling Freelancer")
        try:
            response = await self.http_client.get(
                path, params=params, headers={OAUTH_HEADER_NAME: access_token}
            )
        except httpx.RequestError as e:
            logger.error(
                "Network error calling Freelancer",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise FreelancerApiError(f"Network error calling Freelancer: {e}", operation=operation) from e
        _check_response(response, operation)
        return response

    async def get_user_profile(self, access_token: str) -> tuple[FreelancerUserInfoResponse, str]:
        """The authenticated user's profile and the raw response body."""
        response = await self._get(USER_PROFILE_PATH, access_token, "get_user_profile")
        try:
            return FreelancerUserInfoResponse.model_validate_json(response.content), response.text
        except ValidationError as e:
            raise FreelancerApiError(
                f"Unreadable user profile response: {e}",
                operation="get_user_profile",
                recoverable=False,
            ) from e

    async def get_reviews(
        self, access_token: str, freelancer_user_id: int
    ) -> tuple[FreelancerReviewResponse, str]:
        """Reviews received by a Freelancer user, with reviewer details."""
        params = {
            "to_users[]": freelancer_user_id,
            "user_details": "true",
            "user_profile_description": "true",
            "user_avatar": "true",
            "user_display_info": "true",
            "ratings": "true",
        }
        response = await self._get(REVIEWS_PATH, access_token, "get_reviews", params=params)
        try:
            return FreelancerReviewResponse.model_validate_json(response.content), response.text
        except ValidationError as e:
            raise FreelancerApiError(
                f"Unreadable reviews response: {e}",
                operation="get_reviews",
                recoverable=False,
            ) from e


class FreelancerOAuthClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        oauth_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ):
        self.oauth_url = oauth_url or settings.FREELANCER_OAUTH_URL
        self.client_id = client_id or settings.FREELANCER_CLIENT_ID
        self.client_secret = client_secret or settings.FREELANCER_CLIENT_SECRET
        self._http_client = http_client

    @property
    def token_url(self) -> str:
        return f"{self.oauth_url.rstrip('/')}/token"

    async def refresh_token(self, token: Token) -> Token:
        """
        Exchange the refresh token for a new token pair.

        Raises:
            FreelancerUnauthorizedError: If Freelancer refuses the refresh token
            FreelancerApiError: On any other failure
        """
        if not token.refresh_token:
            raise FreelancerUnauthorizedError("No refresh token stored", operation="refresh_token")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.token_url, data=data, headers=headers)
            else:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(settings.PLATFORM_API_TIMEOUT_SECONDS)
                ) as client:
                    response = await client.post(self.token_url, data=data, headers=headers)
        except httpx.RequestError as e:
            logger.error(
                "Network error during Freelancer token refresh",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise FreelancerApiError(
                f"Network error during token refresh: {e}", operation="refresh_token"
            ) from e

        _check_response(response, "refresh_token")

        body = response.json()
        access_token = body.get("access_token")
        if not access_token:
            raise FreelancerApiError(
                "Token refresh response has no access_token",
                operation="refresh_token",
                recoverable=False,
            )

        logger.info("Freelancer token refreshed", expires_in=body.get("expires_in"))
        return Token(
            access_token=access_token,
            # Keep the old refresh token when a new one is not issued
            refresh_token=body.get("refresh_token") or token.refresh_token,
            expires_in_seconds=body.get("expires_in"),
        )
