"""HTTP client for the case store (read-only)."""

import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from lab_throughput.clients.base import BaseServiceClient
from lab_throughput.exceptions import PopulationFetchError
from lab_throughput.models.case import Case
from lab_throughput.utils.resilience import create_custom_retry

logger = logging.getLogger(__name__)


class CaseStoreClient(BaseServiceClient):
    """Async HTTP client supplying the case population of an analytics run.

    Implements the ``CaseSource`` protocol: ``fetch_cases`` returns every case
    of the configured department together with its action history.

    Usage:
        client = CaseStoreClient(base_url="http://case-store:8000")
        report = await ThroughputAnalytics(config).run(client, Stage.DESIGN)
    """

    def __init__(
        self,
        base_url: str = "http://case-store:8000",
        department: str = "General",
        timeout: float = 30.0,
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 8,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: Base URL of the case store
            department: Department whose cases are fetched
            timeout: Request timeout in seconds (default: 30.0)
            max_attempts: Attempts per fetch on transport errors
            min_wait: Minimum backoff between attempts (seconds)
            max_wait: Maximum backoff between attempts (seconds)
            transport: Optional httpx transport
        """
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)
        self.department = department
        self._retry = create_custom_retry(
            max_attempts=max_attempts, min_wait=min_wait, max_wait=max_wait
        )

    async def fetch_cases(self, correlation_id: Optional[str] = None) -> List[Case]:
        """Fetch all cases of the department, history included.

        Args:
            correlation_id: Optional correlation ID for request tracing

        Returns:
            List of Case objects

        Raises:
            PopulationFetchError: On transport failure (after retries), an
                HTTP error status, or a payload that does not parse
        """
        try:
            payload = await self._retry(self._get_cases)(correlation_id)
        except httpx.HTTPError as e:
            logger.error(f"Case store request failed: {e}")
            raise PopulationFetchError(f"Case store request failed: {e}", cause=e) from e

        items = payload.get("cases", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise PopulationFetchError(
                f"Unexpected case store payload: {type(payload).__name__}"
            )

        try:
            cases = [Case.model_validate(item) for item in items]
        except ValidationError as e:
            logger.error(f"Case store returned invalid case data: {e}")
            raise PopulationFetchError(f"Invalid case data from case store: {e}", cause=e) from e

        logger.info(f"Fetched {len(cases)} cases for department {self.department}")
        return cases

    async def _get_cases(self, correlation_id: Optional[str] = None):
        async with self._get_client() as client:
            response = await client.get(
                f"{self.base_url}/api/v1/cases",
                params={"department": self.department, "include_history": "true"},
                headers=self._headers(correlation_id=correlation_id),
            )
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as e:
                raise PopulationFetchError(f"Case store returned non-JSON body: {e}", cause=e) from e
