"""HTTP client for the university user-info API."""

from typing import Optional
import httpx

from core.config import Settings
from core.exceptions import UpstreamError
from core.logging import get_logger
from models.user import UserProfile

logger = get_logger(__name__)


class UniversityClient:
    """Async client for the identity endpoint used on user-cache misses."""

    service_name = "userinfo"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._url = settings.userinfo_url
        self._timeout = httpx.Timeout(settings.upstream_timeout)
        self._transport = transport

    async def get_user_info(self, access_token: str) -> UserProfile:
        """Fetch the caller's profile with their bearer token.

        Raises:
            UpstreamError: Endpoint not configured, request failed, or the
                response had no ``data`` object.
        """
        if not self._url:
            raise UpstreamError(self.service_name, "USERINFO_URL not configured")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("User info request rejected", status_code=e.response.status_code)
            raise UpstreamError(self.service_name, "Failed to get user data",
                                status_code=e.response.status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("User info request failed", error=str(e))
            raise UpstreamError(self.service_name, f"Request failed: {e}") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise UpstreamError(self.service_name, "Invalid response from server")

        try:
            return UserProfile.from_upstream(data)
        except ValueError as e:
            raise UpstreamError(self.service_name, f"Malformed user data: {e}") from e
