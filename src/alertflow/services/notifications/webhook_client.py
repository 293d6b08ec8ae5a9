"""
Webhook HTTP Client.

Posts JSON bodies to incoming-webhook URLs (generic JSON, Slack, Teams).
Transient failures (5xx, timeouts, connection errors) are retried in place
with exponential backoff. A 429 is handed back to the dispatcher with its
Retry-After so the delivery is rescheduled instead of blocking here.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from ...core.formatters import get_utc_now
from ...core.logging import get_logger

logger = get_logger(__name__)

# Endpoint is gone or we are not allowed to post; resending cannot help
PERMANENT_STATUS_CODES = frozenset({401, 403, 404, 410})

DEFAULT_RETRY_AFTER = 5.0
UNHEALTHY_STREAK = 10


@dataclass
class SendResult:
    """Outcome of handing one notification to one channel transport."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    retry_after: float | None = None
    permanent: bool = False

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class _Transient(Exception):
    """A failure worth another attempt inside the same send() call."""

    def __init__(self, reason: str, final_error: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.final_error = final_error
        self.status_code = status_code


def _retry_after_seconds(response: httpx.Response) -> float:
    raw = response.headers.get("Retry-After")
    try:
        return float(raw) if raw is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


@dataclass
class WebhookClient:
    """
    Async poster for a single webhook URL.

    Tracks send counters so channel health can be reported alongside the
    dispatcher's queue metrics.
    """

    webhook_url: str
    max_retries: int = 3
    base_delay: float = 1.0
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    _total_sent: int = 0
    _total_failed: int = 0
    _last_success: datetime | None = None
    _last_failure: datetime | None = None
    _consecutive_failures: int = 0

    _client: httpx.AsyncClient | None = field(default=None, repr=False)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
                transport=self.transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, payload: dict[str, Any]) -> SendResult:
        """
        POST ``payload`` as JSON.

        Up to ``max_retries`` attempts are made for transient failures, with
        delays of base_delay, 2x, 4x... between them. Rate limits and other
        4xx responses return after the first attempt.
        """
        client = await self._get_client()
        last_error = _Transient("no attempt made", "Unknown error")

        for attempt in range(max(self.max_retries, 1)):
            if attempt:
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning("Webhook %s, retrying in %.1fs", last_error, delay)
                await asyncio.sleep(delay)

            try:
                response = await client.post(self.webhook_url, json=payload)
                result = self._classify(response)
            except _Transient as e:
                last_error = e
                continue
            except httpx.TimeoutException:
                last_error = _Transient("timeout", "Timeout after retries")
                continue
            except httpx.RequestError as e:
                last_error = _Transient(f"request error: {e}", f"Request error: {e}")
                continue

            return self._record(result)

        return self._record(
            SendResult(
                success=False, status_code=last_error.status_code, error=last_error.final_error
            )
        )

    def _classify(self, response: httpx.Response) -> SendResult:
        """Map a response to a final result, or raise _Transient to retry."""
        status = response.status_code

        if response.is_success:
            return SendResult(success=True, status_code=status)

        if status == 429:
            retry_after = _retry_after_seconds(response)
            logger.warning("Webhook rate limited, retry after %.1fs", retry_after)
            return SendResult(
                success=False, status_code=status, retry_after=retry_after, error="Rate limited"
            )

        if status >= 500:
            raise _Transient(
                f"server error {status}",
                f"Server error after {self.max_retries} retries",
                status_code=status,
            )

        if status in PERMANENT_STATUS_CODES:
            logger.warning("Webhook rejected with HTTP %d, not retrying", status)
            return SendResult(
                success=False,
                status_code=status,
                error=f"Webhook rejected (HTTP {status})",
                permanent=True,
            )

        return SendResult(
            success=False, status_code=status, error=f"HTTP {status}: {response.text[:200]}"
        )

    def _record(self, result: SendResult) -> SendResult:
        now = get_utc_now()
        if result.success:
            self._total_sent += 1
            self._last_success = now
            self._consecutive_failures = 0
        else:
            self._total_failed += 1
            self._last_failure = now
            self._consecutive_failures += 1
        return result

    @property
    def success_rate(self) -> float:
        attempts = self._total_sent + self._total_failed
        return self._total_sent / attempts if attempts else 1.0

    @property
    def is_healthy(self) -> bool:
        """False after a long failure streak or when the latest outcome was a failure."""
        if self._consecutive_failures >= UNHEALTHY_STREAK:
            return False
        if self._last_failure is None:
            return True
        if self._last_success is None:
            return self._consecutive_failures < 3
        return self._last_success > self._last_failure

    def get_metrics(self) -> dict[str, Any]:
        def iso(moment: datetime | None) -> str | None:
            return moment.isoformat() if moment else None

        return {
            "total_sent": self._total_sent,
            "total_failed": self._total_failed,
            "success_rate": round(self.success_rate, 3),
            "consecutive_failures": self._consecutive_failures,
            "last_success": iso(self._last_success),
            "last_failure": iso(self._last_failure),
            "is_healthy": self.is_healthy,
        }
