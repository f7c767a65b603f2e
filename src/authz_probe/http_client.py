"""
Async HTTP Client for Authz Probe.

Thin wrapper over httpx with a hard per-call deadline and request logging.
Each call is independent: no retries, no backoff, and a timeout cancels
only the call that exceeded it.
"""

import asyncio
import logging
from datetime import datetime
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "Authz-Probe/1.0.0"


class ProbeTransportFailure(Exception):
    """Raised when a single request fails on the network or times out."""
    pass


class HTTPClient:
    """
    Async HTTP client used by the probe runner.

    Features:
    - Async/await support via httpx
    - Per-call deadline (httpx timeouts plus a total wall-clock bound)
    - Request/response history for debugging
    - Pluggable transport for in-process targets
    """

    def __init__(
        self,
        timeout_ms: int = 8000,
        verify_ssl: bool = True,
        follow_redirects: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout_ms / 1000
        self.verify_ssl = verify_ssl
        self.follow_redirects = follow_redirects
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        # Request/response history for debugging
        self.history: list = []

    async def __aenter__(self) -> "HTTPClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def start(self) -> None:
        """Initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                verify=self.verify_ssl,
                follow_redirects=self.follow_redirects,
                transport=self.transport,
                # Identities must not inherit cookies set by earlier responses
                cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
                headers={"User-Agent": USER_AGENT},
            )
            logger.debug("HTTP client initialized")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed")

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        content: Optional[str] = None,
    ) -> httpx.Response:
        """
        Make a single HTTP request bounded by the configured timeout.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            url: Fully-qualified target URL
            headers: Identity headers to send, if any
            json: Optional JSON body
            content: Optional raw body

        Returns:
            httpx.Response object with the body already read

        Raises:
            ProbeTransportFailure: On network error or timeout
        """
        if self._client is None:
            await self.start()

        start_time = datetime.now()
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method=method.upper(),
                    url=url,
                    headers=headers,
                    json=json,
                    content=content,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.debug(f"Timeout after {self.timeout:.1f}s for {method} {url}")
            raise ProbeTransportFailure(f"Timed out after {self.timeout:.1f}s: {url}") from e
        except httpx.TimeoutException as e:
            logger.debug(f"Timeout for {method} {url}: {e}")
            raise ProbeTransportFailure(f"Timed out: {url}") from e
        except httpx.HTTPError as e:
            logger.debug(f"HTTP error for {method} {url}: {e}")
            raise ProbeTransportFailure(f"Request failed: {e}") from e

        elapsed = (datetime.now() - start_time).total_seconds()
        self._log_request(method, url, response.status_code, elapsed)

        self.history.append({
            "timestamp": start_time.isoformat(),
            "method": method.upper(),
            "url": url,
            "status_code": response.status_code,
            "elapsed_seconds": elapsed,
        })

        return response

    def _log_request(self, method: str, url: str, status_code: int, elapsed: float) -> None:
        """Log a completed request."""
        logger.debug(f"{method} {url} -> {status_code} ({elapsed:.2f}s)")
