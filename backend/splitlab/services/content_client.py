"""
Content System Client - hands concluded winners to the content system.

The content system owns what learners actually see; this client only asks
it to publish a winning version and reports whether it acknowledged.
"""
import httpx
import structlog
from typing import Optional

from splitlab.errors import DeploymentFailed

logger = structlog.get_logger()


class ContentSystemClient:
    """
    Client for the external content system.

    A deployment counts as done only when the content system answers with
    a 2xx status and {"deployed": true}. Anything else raises
    DeploymentFailed so the caller can retry later.
    """

    def __init__(self, base_url: str, timeout: float = 2.0, enabled: bool = True):
        """
        Args:
            base_url: URL of the content system
            timeout: Request timeout in seconds
            enabled: False acknowledges deployments locally without a request
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.enabled = enabled
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request_deployment(self, module_id: str, split_test_id: str, winner: str, version: dict) -> dict:
        """
        Ask the content system to publish the winning version of a module.

        Args:
            module_id: Module whose content changes
            split_test_id: The concluded split test
            winner: "control" or "variant"
            version: The winning version payload

        Returns:
            The content system's acknowledgement body

        Raises:
            DeploymentFailed: On transport errors, non-2xx responses or a negative acknowledgement
        """
        if not self.enabled:
            logger.warning(
                "content_system_disabled",
                split_test_id=split_test_id,
                reason="deployment acknowledged locally"
            )
            return {"deployed": True, "source": "local"}

        payload = {
            "module_id": module_id,
            "split_test_id": split_test_id,
            "winner": winner,
            "version": version,
        }

        try:
            client = await self._get_client()
            response = await client.post("/deployments", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeploymentFailed(f"Content system request failed: {e}") from e

        if not isinstance(data, dict) or data.get("deployed") is not True:
            raise DeploymentFailed("Content system did not acknowledge the deployment")

        return data

    async def health_check(self) -> bool:
        """Check if the content system is reachable."""
        if not self.enabled:
            return False

        try:
            client = await self._get_client()
            response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False


# Singleton instance management
_content_client: Optional[ContentSystemClient] = None


def get_content_client(
    base_url: str = "http://localhost:3002",
    timeout: float = 2.0,
    enabled: bool = True
) -> ContentSystemClient:
    """Get or create the global content system client."""
    global _content_client
    if _content_client is None:
        _content_client = ContentSystemClient(
            base_url=base_url,
            timeout=timeout,
            enabled=enabled
        )
    return _content_client


async def close_content_client():
    """Close the global content system client."""
    global _content_client
    if _content_client is not None:
        await _content_client.close()
        _content_client = None
