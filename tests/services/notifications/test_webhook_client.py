"""
Tests for the webhook HTTP client.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from alertflow.services.notifications import SendResult, WebhookClient

URL = "https://hooks.example.com/T000/B000"


def _client(*responses: httpx.Response | Exception, **kwargs) -> tuple[WebhookClient, list]:
    """Client whose transport replays responses in order and records requests."""
    queue = list(responses)
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    client = WebhookClient(
        webhook_url=URL,
        base_delay=0.0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    return client, requests


class TestSendResult:
    """Tests for SendResult."""

    def test_success_result(self):
        result = SendResult(success=True, status_code=200)
        assert result.success is True
        assert result.error is None
        assert result.permanent is False

    def test_rate_limited(self):
        assert SendResult(success=False, status_code=429).is_rate_limited


class TestWebhookClient:
    """Tests for WebhookClient state and metrics."""

    def test_initialization(self):
        client = WebhookClient(webhook_url=URL)

        assert client.max_retries == 3
        assert client._total_sent == 0
        assert client.success_rate == 1.0
        assert client.is_healthy is True

    def test_is_healthy_after_failures(self):
        client = WebhookClient(webhook_url=URL)
        client._consecutive_failures = 10
        assert client.is_healthy is False

    def test_get_metrics(self):
        client = WebhookClient(webhook_url=URL)
        client._total_sent = 5
        client._total_failed = 1

        metrics = client.get_metrics()

        assert metrics["total_sent"] == 5
        assert metrics["success_rate"] == pytest.approx(0.833, abs=0.01)

    @pytest.mark.asyncio
    async def test_close(self):
        client = WebhookClient(webhook_url=URL)
        mock_http_client = AsyncMock()
        client._client = mock_http_client

        await client.close()

        mock_http_client.aclose.assert_called_once()
        assert client._client is None


class TestWebhookClientSend:
    """Tests for WebhookClient.send."""

    @pytest.mark.asyncio
    async def test_send_success(self):
        client, requests = _client(httpx.Response(200, text="ok"))

        result = await client.send({"text": "hello"})

        assert result.success is True
        assert result.status_code == 200
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"text": "hello"}
        assert client._total_sent == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_any_2xx_is_success(self):
        client, _ = _client(httpx.Response(204))
        assert (await client.send({})).success
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limited_returns_retry_after(self):
        client, requests = _client(httpx.Response(429, headers={"Retry-After": "30"}))

        result = await client.send({})

        assert result.success is False
        assert result.retry_after == 30.0
        assert result.permanent is False
        assert len(requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_unparseable_retry_after_uses_default(self):
        client, _ = _client(httpx.Response(429, headers={"Retry-After": "soon"}))

        result = await client.send({})

        assert result.retry_after == 5.0
        await client.close()

    @pytest.mark.parametrize("status", [401, 403, 404, 410])
    @pytest.mark.asyncio
    async def test_permanent_failures(self, status):
        client, requests = _client(httpx.Response(status))

        result = await client.send({})

        assert result.success is False
        assert result.permanent is True
        assert len(requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_other_4xx_not_retried(self):
        client, requests = _client(httpx.Response(400, text="bad payload"))

        result = await client.send({})

        assert result.success is False
        assert result.permanent is False
        assert "bad payload" in result.error
        assert len(requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        client, requests = _client(httpx.Response(502), httpx.Response(200))

        result = await client.send({})

        assert result.success is True
        assert len(requests) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        client, requests = _client(
            httpx.Response(500), httpx.Response(500), httpx.Response(500)
        )

        result = await client.send({})

        assert result.success is False
        assert len(requests) == 3
        assert client._consecutive_failures == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_retried(self):
        client, requests = _client(
            httpx.ReadTimeout("slow"),
            httpx.Response(200),
        )

        result = await client.send({})

        assert result.success is True
        assert len(requests) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_after_retries(self):
        client, _ = _client(
            httpx.ConnectError("refused"),
            httpx.ConnectError("refused"),
            max_retries=2,
        )

        result = await client.send({})

        assert result.success is False
        assert "Request error" in result.error
        await client.close()

    @pytest.mark.asyncio
    async def test_uses_injected_http_client(self):
        client = WebhookClient(webhook_url=URL)
        mock_response = MagicMock()
        mock_response.is_success = True
        mock_response.status_code = 200
        mock_http_client = AsyncMock()
        mock_http_client.post = AsyncMock(return_value=mock_response)

        with patch.object(client, "_get_client", return_value=mock_http_client):
            result = await client.send({"a": 1})

        assert result.success
        mock_http_client.post.assert_called_once_with(URL, json={"a": 1})
