"""
LRS Client
===========
HTTP client for one Learning Record Store (xAPI 1.0.3).

- query_statements(): GET /statements, follows `more` links page by page
  (strictly sequential), truncates to max_statements, tags every statement
  with this client's instance id.
- Each page fetch is retried with exponential backoff on network errors,
  timeouts, 5xx and 429. Other 4xx responses fail immediately.
- Exhausted or non-retryable failures are raised as a categorized
  LRSTransportError and counted by category in telemetry.
- get_instance_health(): GET /about; 401/403 still count as reachable.
"""

import asyncio
import base64
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from .config import LRSInstanceConfig
from .errors import (
    LRSAuthError,
    LRSClientError,
    LRSConnectionError,
    LRSRateLimitError,
    LRSServerError,
    LRSTimeoutError,
    LRSTransportError,
    LRSUnknownError,
)
from .metrics import MetricsCollector
from .models import InstanceHealth, Statement
from .query_builder import LRSQueryBuilder

logger = logging.getLogger(__name__)

XAPI_VERSION = "1.0.3"
DEFAULT_MAX_STATEMENTS = 10000


class LRSClient:
    """
    Usage:
        client = LRSClient(instance, telemetry=metrics)
        statements = await client.query_statements({"activity": course_iri})
        await client.close()
    """

    def __init__(
        self,
        instance: LRSInstanceConfig,
        telemetry: Optional[MetricsCollector] = None,
        max_retries: int = 3,
        retry_base_delay_ms: int = 100,
        retry_max_delay_ms: int = 500,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.instance = instance
        self.telemetry = telemetry
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=instance.timeout_ms / 1000,
            transport=transport,
        )

    @property
    def instance_id(self) -> str:
        return self.instance.id

    async def close(self):
        await self._client.aclose()

    # ── Public API ────────────────────────────────────────────────

    async def query_statements(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        max_statements: int = DEFAULT_MAX_STATEMENTS,
        correlation_id: Optional[str] = None,
    ) -> List[Statement]:
        """Fetch all statements matching `filters`, up to `max_statements`."""
        operation = "queryStatements"
        correlation_id = correlation_id or str(uuid.uuid4())
        params = LRSQueryBuilder.from_filters(filters).build()
        url = f"{self.instance.endpoint}/statements"
        start = time.monotonic()

        statements: List[Statement] = []
        pages = 0
        try:
            next_url: Optional[str] = url
            next_params: Optional[Dict[str, str]] = params
            while next_url:
                body = await self._fetch_page(next_url, next_params, correlation_id, operation)
                pages += 1
                statements.extend(body.get("statements") or [])
                more = body.get("more")
                if not more or len(statements) >= max_statements:
                    break
                # The `more` link carries its own query string
                next_url = self._resolve_more_url(more)
                next_params = None
        finally:
            if self.telemetry:
                self.telemetry.record_lrs_query(self.instance_id, time.monotonic() - start)

        statements = statements[:max_statements]
        logger.debug(
            f"[{self.instance_id}] {len(statements)} statements in {pages} page(s) "
            f"({(time.monotonic() - start) * 1000:.0f}ms, cid={correlation_id})"
        )
        return [{**stmt, "instanceId": self.instance_id} for stmt in statements]

    async def aggregate(self, filters: Optional[Mapping[str, Any]] = None) -> int:
        """Count matching statements (limit=0 lets the LRS pick its page size)."""
        query = dict(filters or {})
        query.setdefault("limit", 0)
        statements = await self.query_statements(query)
        return len(statements)

    async def get_instance_health(self) -> InstanceHealth:
        url = f"{self.instance.endpoint}/about"
        start = time.monotonic()
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            resp = await self._client.get(url, headers=self._build_headers(str(uuid.uuid4())))
        except httpx.TimeoutException:
            return InstanceHealth(
                instance_id=self.instance_id,
                healthy=False,
                error=f"LRS request timeout after {self.instance.timeout_ms}ms (getInstanceHealth)",
                response_time_ms=self._elapsed_ms(start),
                checked_at=checked_at,
            )
        except httpx.HTTPError as e:
            return InstanceHealth(
                instance_id=self.instance_id,
                healthy=False,
                error=f"LRS connection error: {e} (getInstanceHealth)",
                response_time_ms=self._elapsed_ms(start),
                checked_at=checked_at,
            )

        elapsed = self._elapsed_ms(start)
        if resp.is_success:
            return InstanceHealth(
                instance_id=self.instance_id,
                healthy=True,
                version=self._about_version(resp),
                response_time_ms=elapsed,
                checked_at=checked_at,
            )
        # Auth failures prove the LRS is up
        return InstanceHealth(
            instance_id=self.instance_id,
            healthy=resp.status_code in (401, 403),
            error=str(self._error_for_status(resp.status_code, "getInstanceHealth")),
            response_time_ms=elapsed,
            checked_at=checked_at,
        )

    # ── Internals ─────────────────────────────────────────────────

    def _build_headers(self, correlation_id: str) -> Dict[str, str]:
        headers = {
            "X-Experience-API-Version": XAPI_VERSION,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Correlation-ID": correlation_id,
        }
        auth = self.instance.auth
        if auth.type == "basic":
            token = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
            headers["Authorization"] = f"Basic {token}"
        elif auth.type == "bearer":
            headers["Authorization"] = f"Bearer {auth.token}"
        elif auth.type == "custom":
            headers.update(dict(auth.headers))
        return headers

    def _resolve_more_url(self, more: str) -> str:
        if more.startswith(("http://", "https://")):
            return more
        parts = urlsplit(self.instance.endpoint)
        return f"{parts.scheme}://{parts.netloc}/{more.lstrip('/')}"

    def _retry_delay_s(self, attempt: int) -> float:
        delay_ms = min(self.retry_base_delay_ms * (2 ** attempt), self.retry_max_delay_ms)
        return delay_ms / 1000

    async def _fetch_page(
        self,
        url: str,
        params: Optional[Dict[str, str]],
        correlation_id: str,
        operation: str,
    ) -> Dict[str, Any]:
        headers = self._build_headers(correlation_id)
        last_error: Optional[LRSTransportError] = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._client.get(url, params=params, headers=headers)
            except httpx.TimeoutException:
                last_error = LRSTimeoutError(
                    f"LRS request timeout after {self.instance.timeout_ms}ms ({operation})",
                    operation,
                )
            except httpx.TransportError as e:
                last_error = LRSConnectionError(
                    f"LRS connection error: {e} ({operation}). "
                    f"Check the LRS endpoint configuration and network connectivity.",
                    operation,
                )
            else:
                if resp.is_success:
                    try:
                        return resp.json()
                    except ValueError as e:
                        self._fail(LRSUnknownError(
                            f"LRS error: invalid JSON response ({operation})", operation
                        ), e)
                error = self._error_for_status(resp.status_code, operation)
                if not self._is_retryable_status(resp.status_code):
                    self._fail(error)
                last_error = error

            if attempt < self.max_retries:
                delay = self._retry_delay_s(attempt)
                logger.warning(
                    f"[{self.instance_id}] {last_error}, retry {attempt + 1}/{self.max_retries} "
                    f"in {delay * 1000:.0f}ms"
                )
                await self._sleep(delay)

        self._fail(last_error)

    @staticmethod
    def _is_retryable_status(status: int) -> bool:
        return status == 429 or status >= 500

    def _fail(self, error: LRSTransportError, cause: Optional[Exception] = None):
        logger.error(f"[{self.instance_id}] {error}")
        if self.telemetry:
            self.telemetry.record_lrs_error(error.category)
        raise error from cause

    @staticmethod
    def _error_for_status(status: int, operation: str) -> LRSTransportError:
        if status == 401:
            return LRSAuthError(
                f"LRS authentication failed ({operation}). Check the LRS credentials.",
                operation, status,
            )
        if status == 403:
            return LRSAuthError(
                f"LRS authorization failed ({operation}). Insufficient permissions for this operation.",
                operation, status,
            )
        if status == 429:
            return LRSRateLimitError(
                f"LRS rate limit exceeded ({operation}). Retry after backoff period.",
                operation, status,
            )
        if status >= 500:
            return LRSServerError(f"LRS server error: {status} ({operation})", operation, status)
        if status >= 400:
            return LRSClientError(f"LRS error: HTTP {status} ({operation})", operation, status)
        return LRSUnknownError(f"LRS error: unexpected HTTP {status} ({operation})", operation, status)

    @staticmethod
    def _about_version(resp: httpx.Response) -> str:
        try:
            version = resp.json().get("version")
        except (ValueError, AttributeError):
            return XAPI_VERSION
        if isinstance(version, list):
            version = version[0] if version else None
        return version or XAPI_VERSION

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.monotonic() - start) * 1000, 1)
