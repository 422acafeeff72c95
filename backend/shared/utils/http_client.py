"""
Async HTTP client wrapper for JSON sources (odds API, live-score feeds).
Includes retry on transient errors, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import HTTP_LATENCY, HTTP_REQUESTS

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class SourceHTTPClient:
    """
    Async HTTP client for non-browser sources.
    Retries timeouts and 5xx responses; 4xx responses are returned to the caller,
    which decides whether they mean blocking, quota exhaustion or bad input.
    """

    def __init__(
        self,
        source_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int = 2,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._source = source_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.http_request_timeout_s
        self._max_retries = max_retries
        self._default_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
        if headers:
            self._default_headers.update(headers)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def source(self) -> str:
        return self._source

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform a GET request with retry, metrics, and structured logging.

        Returns the final response, whatever its status, once a response arrives.

        Raises:
            httpx.TimeoutException / httpx.TransportError: If all retries are exhausted.
        """
        if not self._client:
            await self.start()
        assert self._client is not None

        last_exc: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(path, params=params, headers=extra_headers)
                status = str(resp.status_code)

                if resp.status_code >= 500 and attempt < self._max_retries:
                    logger.warning(
                        "source_http_server_error",
                        source=self._source,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    await asyncio.sleep(1.0 * attempt)
                    continue

                logger.debug(
                    "source_http_response",
                    source=self._source,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning("source_http_timeout", source=self._source, path=path, attempt=attempt)
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "source_http_transport_error",
                    source=self._source,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
            finally:
                HTTP_REQUESTS.labels(source=self._source, status=status).inc()
                HTTP_LATENCY.labels(source=self._source).observe(time.perf_counter() - start_time)

            if attempt < self._max_retries:
                await asyncio.sleep(1.0 * attempt)

        if last_exc:
            raise last_exc
        raise RuntimeError(f"{self._source} request failed after {self._max_retries} attempts")
