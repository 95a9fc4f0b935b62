"""
Coordinator API client.

Provides the HTTP client used to fetch pending jobs from the coordinator,
submit job results and call job webhooks.
"""

import logging
from typing import Any, Optional

import httpx

from macbridge_agent import __version__
from macbridge_agent.models import Job, parse_webhook_url

logger = logging.getLogger("macbridge.agent.api_client")


# ============================================================================
# Constants
# ============================================================================

NEXT_JOB_PATH = "/jobs/next"
RESULT_PATH = "/jobs/result"
DEFAULT_TIMEOUT = 30.0  # seconds
USER_AGENT = f"MacBridge-Agent/{__version__}"


# ============================================================================
# Exceptions
# ============================================================================


class ApiError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionError(ApiError):
    """Raised when connection to server fails."""

    pass


# ============================================================================
# CoordinatorClient Class
# ============================================================================


class CoordinatorClient:
    """
    HTTP client for the build coordinator.

    Attributes:
        server_url: Base URL of the coordinator
    """

    def __init__(
        self,
        server_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            server_url: Base URL of the coordinator
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)

        Raises:
            ValueError: If server_url is empty
        """
        if not server_url:
            raise ValueError("server_url is required")

        self._server_url = server_url.rstrip("/")
        self._timeout = timeout

        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

        self._client = httpx.AsyncClient(
            base_url=self._server_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def server_url(self) -> str:
        """Get the server URL."""
        return self._server_url

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def fetch_next_job(self) -> Optional[Job]:
        """
        Ask the coordinator for the next pending job.

        Returns:
            Job, or None if no job is available (204 response or a body
            without job_id/zip_url)

        Raises:
            ApiError: On an error status or a body that is not a JSON object
            ConnectionError: If connection to server fails
        """
        try:
            response = await self._client.get(NEXT_JOB_PATH)
        except httpx.ConnectError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Connection timed out: {e}")
        except httpx.HTTPError as e:
            raise ConnectionError(f"Request failed: {e}")

        if response.status_code == 204:
            return None
        if response.status_code != 200:
            raise ApiError(
                f"Job poll failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise ApiError("Job poll returned a non-JSON body", status_code=200)

        if not isinstance(payload, dict):
            raise ApiError("Job poll returned a non-object body", status_code=200)

        return Job.from_payload(payload)

    async def submit_result(self, payload: dict[str, Any]) -> None:
        """
        Submit a job result to the coordinator.

        Raises:
            ApiError: If the coordinator rejects the result
            ConnectionError: If connection to server fails
        """
        await self._post(RESULT_PATH, payload)

    async def post_webhook(self, url: str, payload: dict[str, Any]) -> None:
        """
        POST a job result to a caller-supplied webhook.

        Raises:
            ApiError: If the webhook answers with an error status
            ConnectionError: If the webhook cannot be reached
        """
        if parse_webhook_url(url) is None:
            raise ApiError(f"Invalid URL {url!r}: not an absolute http(s) URL")
        await self._post(url, payload)

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(url, json=payload)
        except httpx.ConnectError as e:
            raise ConnectionError(f"Failed to connect to {url}: {e}")
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Connection timed out: {e}")
        except httpx.HTTPError as e:
            raise ConnectionError(f"Request to {url} failed: {e}")
        except (httpx.InvalidURL, TypeError) as e:
            raise ApiError(f"Invalid URL {url!r}: {e}")

        if not response.is_success:
            raise ApiError(
                f"POST {url} failed with status {response.status_code}",
                status_code=response.status_code,
            )

    async def ping(self) -> bool:
        """
        Check that the coordinator is reachable.

        Sends a HEAD request to the base URL so no job is claimed. Any HTTP
        answer counts as reachable; only transport failures do not.
        """
        try:
            await self._client.head("/")
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Coordinator ping failed: {e}")
            return False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "CoordinatorClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
