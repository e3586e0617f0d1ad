"""Tests for the case store client."""

import httpx
import pytest

from lab_throughput.clients import CaseStoreClient
from lab_throughput.core.pipeline import CaseSource
from lab_throughput.exceptions import PopulationFetchError
from lab_throughput.models import CaseCategory

CASE_PAYLOAD = {
    "id": "c1",
    "case_number": "N-1001",
    "department": "General",
    "created_at": "2025-09-08T14:00:00Z",
    "due": "2025-09-19",
    "tags": ["stage-production", "bbs"],
    "history": [
        {"action": "Moved from Design to Production stage", "created_at": "2025-09-09T16:00:00Z"},
    ],
}


def _client(handler, **kwargs) -> CaseStoreClient:
    return CaseStoreClient(
        base_url="http://case-store.test/",
        transport=httpx.MockTransport(handler),
        min_wait=0,
        max_wait=0,
        **kwargs,
    )


class TestFetchCases:
    """Successful fetches."""

    @pytest.mark.asyncio
    async def test_list_payload(self):
        client = _client(lambda request: httpx.Response(200, json=[CASE_PAYLOAD]))

        cases = await client.fetch_cases()

        assert len(cases) == 1
        assert cases[0].case_number == "N-1001"
        assert cases[0].category is CaseCategory.BBS
        assert len(cases[0].history) == 1

    @pytest.mark.asyncio
    async def test_wrapped_payload(self):
        client = _client(lambda request: httpx.Response(200, json={"cases": [CASE_PAYLOAD]}))
        cases = await client.fetch_cases()
        assert [c.id for c in cases] == ["c1"]

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        client = _client(handler, department="Models")
        await client.fetch_cases(correlation_id="run-42")

        request = seen[0]
        assert request.url.path == "/api/v1/cases"
        assert request.url.params["department"] == "Models"
        assert request.url.params["include_history"] == "true"
        assert request.headers["X-Correlation-ID"] == "run-42"

    def test_is_a_case_source(self):
        assert isinstance(_client(lambda request: httpx.Response(200, json=[])), CaseSource)


class TestFetchFailures:
    """Every failure surfaces as PopulationFetchError."""

    @pytest.mark.asyncio
    async def test_http_error_status_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"detail": "boom"})

        with pytest.raises(PopulationFetchError):
            await _client(handler).fetch_cases()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PopulationFetchError) as exc_info:
            await _client(handler, max_attempts=3).fetch_cases()

        assert len(calls) == 3
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=[CASE_PAYLOAD])

        cases = await _client(handler).fetch_cases()
        assert len(cases) == 1
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_case_data(self):
        client = _client(lambda request: httpx.Response(200, json=[{"id": "c1"}]))
        with pytest.raises(PopulationFetchError, match="Invalid case data"):
            await client.fetch_cases()

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        client = _client(lambda request: httpx.Response(200, json={"cases": "nope"}))
        with pytest.raises(PopulationFetchError):
            await client.fetch_cases()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(PopulationFetchError, match="non-JSON"):
            await client.fetch_cases()
