"""Unit tests for LRSClient using httpx.MockTransport."""

import base64
from typing import Callable, List
from unittest.mock import AsyncMock

import httpx
import pytest

from lrs_analytics.config import LRSAuth
from lrs_analytics.errors import (
    LRSAuthError,
    LRSClientError,
    LRSConnectionError,
    LRSServerError,
    LRSTimeoutError,
)
from lrs_analytics.lrs_client import LRSClient

from conftest import make_instance, make_statement


def _client(handler: Callable[[httpx.Request], httpx.Response], telemetry=None, instance=None, **kwargs):
    """LRSClient over a mock transport with a no-op sleep."""
    sleep = AsyncMock()
    client = LRSClient(
        instance or make_instance(),
        telemetry=telemetry,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        **kwargs,
    )
    return client, sleep


def _recording(responses: List[httpx.Response]):
    """Handler returning `responses` in order and recording requests."""
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[len(requests) - 1]

    return handler, requests


@pytest.mark.unit
class TestQueryStatements:
    """Test cases for LRSClient.query_statements."""

    @pytest.mark.asyncio
    async def test_single_page_tags_instance(self):
        """Test that statements are returned tagged with the instance id."""
        handler, requests = _recording([httpx.Response(200, json={"statements": [make_statement()]})])
        client, _ = _client(handler)

        statements = await client.query_statements({"activity": "https://lms.example/course/1"})
        await client.close()

        assert len(statements) == 1
        assert statements[0]["instanceId"] == "default"
        assert len(requests) == 1
        assert requests[0].url.path == "/xapi/statements"
        assert requests[0].url.params["activity"] == "https://lms.example/course/1"

    @pytest.mark.asyncio
    async def test_follows_relative_more_link(self):
        """Test that a relative `more` link is resolved against the endpoint host."""
        handler, requests = _recording([
            httpx.Response(200, json={"statements": [make_statement()], "more": "/xapi/statements?more=abc"}),
            httpx.Response(200, json={"statements": [make_statement(actor="user-2")], "more": ""}),
        ])
        client, _ = _client(handler)

        statements = await client.query_statements()
        await client.close()

        assert len(statements) == 2
        assert len(requests) == 2
        assert str(requests[1].url) == "https://lrs.example/xapi/statements?more=abc"

    @pytest.mark.asyncio
    async def test_truncates_to_max_statements(self):
        """Test that paging stops once max_statements is reached."""
        page = {"statements": [make_statement() for _ in range(3)], "more": "/xapi/statements?more=next"}
        handler, requests = _recording([httpx.Response(200, json=page)])
        client, _ = _client(handler)

        statements = await client.query_statements(max_statements=2)
        await client.close()

        assert len(statements) == 2
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_basic_auth_and_xapi_headers(self):
        """Test the xAPI version, correlation id and basic auth headers."""
        handler, requests = _recording([httpx.Response(200, json={"statements": []})])
        client, _ = _client(handler)

        await client.query_statements(correlation_id="cid-1")
        await client.close()

        headers = requests[0].headers
        assert headers["X-Experience-API-Version"] == "1.0.3"
        assert headers["X-Correlation-ID"] == "cid-1"
        assert headers["Authorization"] == "Basic " + base64.b64encode(b"key:secret").decode()

    @pytest.mark.asyncio
    async def test_bearer_auth(self):
        """Test the bearer token header."""
        handler, requests = _recording([httpx.Response(200, json={"statements": []})])
        instance = make_instance(auth=LRSAuth(type="bearer", token="tok"))
        client, _ = _client(handler, instance=instance)

        await client.query_statements()
        await client.close()

        assert requests[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.unit
class TestRetryPolicy:
    """Test cases for retries and error classification."""

    @pytest.mark.asyncio
    async def test_503_then_200_makes_two_calls(self):
        """Test that a transient 503 is retried once and succeeds."""
        handler, requests = _recording([
            httpx.Response(503),
            httpx.Response(200, json={"statements": [make_statement()]}),
        ])
        client, sleep = _client(handler)

        statements = await client.query_statements()
        await client.close()

        assert len(requests) == 2
        assert len(statements) == 1
        sleep.assert_awaited_once_with(0.1)

    @pytest.mark.asyncio
    async def test_404_is_not_retried(self, telemetry):
        """Test that a 404 fails after exactly one call."""
        handler, requests = _recording([httpx.Response(404)])
        client, sleep = _client(handler, telemetry=telemetry)

        with pytest.raises(LRSClientError) as exc_info:
            await client.query_statements()
        await client.close()

        assert len(requests) == 1
        assert exc_info.value.status_code == 404
        assert exc_info.value.operation == "queryStatements"
        sleep.assert_not_awaited()
        assert telemetry.lrs_errors.get("client") == 1

    @pytest.mark.asyncio
    async def test_401_is_auth_error(self):
        """Test that 401 maps to an auth error without retry."""
        handler, requests = _recording([httpx.Response(401)])
        client, _ = _client(handler)

        with pytest.raises(LRSAuthError):
            await client.query_statements()
        await client.close()
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_with_capped_backoff(self):
        """Test that persistent 500s use every retry with capped backoff."""
        handler, requests = _recording([httpx.Response(500)] * 4)
        client, sleep = _client(handler)

        with pytest.raises(LRSServerError):
            await client.query_statements()
        await client.close()

        assert len(requests) == 4
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2, 0.4]

    @pytest.mark.asyncio
    async def test_backoff_capped_at_max_delay(self):
        """Test that the delay never exceeds the max delay."""
        client, _ = _client(lambda request: httpx.Response(200))
        assert client._retry_delay_s(5) == 0.5
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_classified(self):
        """Test that a timeout becomes LRSTimeoutError."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = _client(handler, max_retries=1)
        with pytest.raises(LRSTimeoutError):
            await client.query_statements()
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_classified(self, telemetry):
        """Test that a refused connection becomes LRSConnectionError."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _client(handler, telemetry=telemetry, max_retries=0)
        with pytest.raises(LRSConnectionError):
            await client.query_statements()
        await client.close()
        assert telemetry.lrs_errors.get("connection") == 1

    @pytest.mark.asyncio
    async def test_aggregate_counts_with_limit_zero(self):
        """Test that aggregate() queries with limit=0 and counts."""
        handler, requests = _recording([
            httpx.Response(200, json={"statements": [make_statement(), make_statement()]}),
        ])
        client, _ = _client(handler)

        count = await client.aggregate({"verb": "http://adlnet.gov/expapi/verbs/completed"})
        await client.close()

        assert count == 2
        assert requests[0].url.params["limit"] == "0"


@pytest.mark.unit
class TestInstanceHealth:
    """Test cases for LRSClient.get_instance_health."""

    @pytest.mark.asyncio
    async def test_healthy_reports_version(self):
        """Test a 200 /about response."""
        handler, requests = _recording([httpx.Response(200, json={"version": ["1.0.3"]})])
        client, _ = _client(handler)

        health = await client.get_instance_health()
        await client.close()

        assert health.healthy is True
        assert health.version == "1.0.3"
        assert requests[0].url.path == "/xapi/about"

    @pytest.mark.asyncio
    async def test_auth_failure_still_healthy(self):
        """Test that 401 proves the LRS is reachable."""
        handler, _ = _recording([httpx.Response(401)])
        client, _ = _client(handler)

        health = await client.get_instance_health()
        await client.close()

        assert health.healthy is True
        assert health.error

    @pytest.mark.asyncio
    async def test_server_error_unhealthy(self):
        """Test that a 500 /about response is unhealthy."""
        handler, _ = _recording([httpx.Response(500)])
        client, _ = _client(handler)

        health = await client.get_instance_health()
        await client.close()

        assert health.healthy is False
        assert "500" in health.error

    @pytest.mark.asyncio
    async def test_unreachable_unhealthy(self):
        """Test that a connection error is unhealthy, not raised."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = _client(handler)
        health = await client.get_instance_health()
        await client.close()

        assert health.healthy is False
        assert health.response_time_ms is not None
