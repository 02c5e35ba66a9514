"""HTTP client for the meeting-token API."""

import logging

import aiohttp

from src.mesh.errors import MeshError

logger = logging.getLogger(__name__)


class MeetingApiError(MeshError):
    """The meeting API is unreachable or returned an error."""


class MeetingApiClient:
    """Creates and checks meeting tokens over HTTP."""

    def __init__(self, base_url: str, timeout_s: float = 10.0) -> None:
        """Initialize meeting API client.

        Args:
            base_url: API base URL (e.g., http://localhost:8081)
            timeout_s: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def create_meeting(self) -> str:
        """Create a meeting.

        Returns:
            New meeting token

        Raises:
            MeetingApiError: If the request fails
        """
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(f"{self.base_url}/api/meet/create") as response:
                    data = await response.json()
                    if response.status != 200:
                        raise MeetingApiError(data.get("error", f"HTTP {response.status}"))
        except aiohttp.ClientError as e:
            raise MeetingApiError(f"Meeting API unreachable: {e}") from e

        meet_id = data["meetId"]
        logger.info("Meeting created", extra={"meet_id": meet_id})
        return meet_id

    async def check_meeting(self, meet_id: str) -> bool:
        """Check whether a meeting token exists (and refresh its access time).

        Raises:
            MeetingApiError: If the request fails
        """
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(f"{self.base_url}/api/meet/check/{meet_id}") as response:
                    if response.status == 404:
                        return False
                    data = await response.json()
                    if response.status != 200:
                        raise MeetingApiError(data.get("error", f"HTTP {response.status}"))
        except aiohttp.ClientError as e:
            raise MeetingApiError(f"Meeting API unreachable: {e}") from e

        return bool(data.get("exists", False))
