"""Base client for read-only calls to internal services."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class BaseServiceClient:
    """Base class for internal service HTTP clients.

    Usage:
        class CaseStoreClient(BaseServiceClient):
            async def fetch_cases(self) -> List[Case]:
                async with self._get_client() as client:
                    response = await client.get(
                        f"{self.base_url}/api/v1/cases",
                        headers=self._headers(),
                    )
                    response.raise_for_status()
                    return [Case.model_validate(item) for item in response.json()]
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize service client.

        Args:
            base_url: Service base URL (e.g., http://case-store:8000)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (e.g. ``httpx.MockTransport`` in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

        logger.info(f"Initialized {self.__class__.__name__} with base_url={base_url}")

    def _headers(self, correlation_id: Optional[str] = None) -> dict:
        """Request headers, with a correlation ID for tracing when given"""
        headers = {
            "Accept": "application/json",
        }
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client instance with configured timeout.

        Returns:
            Configured AsyncClient ready for use with async context manager
        """
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def close(self):
        """Close any persistent connections.

        Override this if your client maintains a persistent httpx.AsyncClient.
        """
        pass
