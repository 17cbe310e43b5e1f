import asyncio
import logging
import math
import random
import time
from collections.abc import AsyncIterator, Mapping, MutableMapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from shared.observability.telemetry import CORRELATION_ID_HEADER

logger = logging.getLogger(__name__)
DEFAULT_TIMEOUT = httpx.Timeout(45.0, connect=5.0, read=45.0, write=15.0, pool=5.0)
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_BACKOFF_FACTOR = 0.25
# 429 is a quota signal for the caller, never retried here.
RETRYABLE_STATUS_CODES = {408, 425, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 3600.0


@dataclass
class RequestMetrics:
    attempts: int
    latency_ms: float


class ResilientHttpClient:
    """
    Async httpx helper with retries, timeouts, and structured logging.

    One `httpx.AsyncClient` is shared by every call and closed with `aclose()`.
    Non-retryable error statuses are returned to the caller instead of raised,
    since 401/403/429 carry meaning for the assistant session.
    """

    def __init__(
        self,
        *,
        timeout: httpx.Timeout | float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        correlation_header: str = CORRELATION_ID_HEADER,
        retry_status_codes: set[int] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._backoff_factor = max(0.0, backoff_factor)
        self._correlation_header = correlation_header
        self._retry_status_codes = retry_status_codes if retry_status_codes is not None else RETRYABLE_STATUS_CODES
        self._client = client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ResilientHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        request_id: str,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> tuple[httpx.Response, RequestMetrics]:
        attempts = 0
        start_time = time.perf_counter()

        while True:
            attempts += 1
            request_headers = self._build_headers(headers, request_id)
            try:
                response = await self._client.request(method.upper(), url, headers=request_headers, **kwargs)
            except httpx.RequestError as exc:
                metrics = self._metrics(start_time, attempts)
                if attempts < self._max_attempts:
                    self._log_retry(url, method, request_id, metrics, str(exc))
                    await asyncio.sleep(self._backoff_seconds(attempts))
                    continue
                self._log_failure(url, method, request_id, metrics, str(exc))
                raise

            metrics = self._metrics(start_time, attempts)
            if response.status_code in self._retry_status_codes and attempts < self._max_attempts:
                self._log_retry(url, method, request_id, metrics, f"status {response.status_code}")
                await asyncio.sleep(self._backoff_seconds(attempts))
                continue

            self._log_response(url, method, response.status_code, request_id, metrics)
            return response, metrics

    async def post(
        self,
        url: str,
        *,
        request_id: str,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> tuple[httpx.Response, RequestMetrics]:
        return await self.request("POST", url, request_id=request_id, headers=headers, **kwargs)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        *,
        request_id: str,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[httpx.Response]:
        """Single-attempt streaming request; the body is read by the caller."""

        start_time = time.perf_counter()
        request_headers = self._build_headers(headers, request_id)
        try:
            async with self._client.stream(method.upper(), url, headers=request_headers, **kwargs) as response:
                self._log_response(url, method, response.status_code, request_id, self._metrics(start_time, 1))
                yield response
        except httpx.RequestError as exc:
            self._log_failure(url, method, request_id, self._metrics(start_time, 1), str(exc))
            raise

    def _build_headers(
        self,
        headers: Mapping[str, str] | None,
        request_id: str,
    ) -> MutableMapping[str, str]:
        merged: MutableMapping[str, str] = {}
        if headers:
            merged.update(headers)
        merged.setdefault(self._correlation_header, request_id)
        return merged

    def _metrics(self, start_time: float, attempts: int) -> RequestMetrics:
        latency_ms = (time.perf_counter() - start_time) * 1000
        return RequestMetrics(attempts=attempts, latency_ms=round(latency_ms, 2))

    def _backoff_seconds(self, attempts: int) -> float:
        base = self._backoff_factor * (2 ** (attempts - 1))
        jitter = random.uniform(0, base / 2 if base else 0)
        return base + jitter

    def _log_response(
        self,
        url: str,
        method: str,
        status_code: int,
        request_id: str,
        metrics: RequestMetrics,
    ) -> None:
        logger.info(
            {
                "event": "http_request",
                "outcome": "success" if status_code < 400 else "error_status",
                "url": url,
                "method": method.upper(),
                "status_code": status_code,
                "request_id": request_id,
                "latency_ms": metrics.latency_ms,
                "attempts": metrics.attempts,
            }
        )

    def _log_retry(self, url: str, method: str, request_id: str, metrics: RequestMetrics, error: str) -> None:
        logger.warning(
            {
                "event": "http_request",
                "outcome": "retry",
                "url": url,
                "method": method.upper(),
                "request_id": request_id,
                "attempts": metrics.attempts,
                "latency_ms": metrics.latency_ms,
                "error": error,
            }
        )

    def _log_failure(self, url: str, method: str, request_id: str, metrics: RequestMetrics, error: str) -> None:
        logger.error(
            {
                "event": "http_request",
                "outcome": "failure",
                "url": url,
                "method": method.upper(),
                "request_id": request_id,
                "attempts": metrics.attempts,
                "latency_ms": metrics.latency_ms,
                "error": error,
            }
        )


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds to wait from a `Retry-After` header (delta-seconds or HTTP date)."""

    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        return min(max(0.0, seconds), MAX_RETRY_AFTER_SECONDS)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return min(max(0.0, delta), MAX_RETRY_AFTER_SECONDS)
