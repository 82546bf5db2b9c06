"""
Shared REST Client

Async HTTP GET client used by every provider's api_client. It handles:
- aiohttp session lifecycle (async context manager)
- One attempt per call; retries are the FailoverFetcher's job
- Translating every transport/protocol failure into UpstreamError

Usage:
    async with RestClient("binance", "https://api.binance.com") as client:
        payload = await client._get("/api/v3/depth", {"symbol": "BTCUSDT"})
"""

import asyncio
from contextlib import contextmanager
import time
from typing import Any, Dict, Optional

import aiohttp

from core.errors import UpstreamError
from core.logging import get_logger, log_api_request, log_api_response


class RestClient:
    """
    Base async HTTP client for provider REST APIs.

    Attributes:
        source: Adapter name carried on every UpstreamError
        base_url: Prefix for relative paths passed to _get
        timeout: aiohttp total timeout in seconds
        session: aiohttp ClientSession (created in __aenter__)

    Notes:
        - Absolute URLs (starting with http) bypass base_url, which lets relay
          wrappers pass fully built URLs
        - Non-200 statuses, timeouts, connection errors and undecodable JSON
          all raise UpstreamError
    """

    def __init__(self, source: str, base_url: str, timeout: float = 10.0):
        self.source = source
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(f"exchanges.{source}.api_client")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"},
            )
            self.logger.debug(f"{self.source} session created")

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{self.source} session closed")
        self.session = None

    # ============================================
    # HTTP Request Handler (single attempt)
    # ============================================

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make one GET request and return the decoded JSON body.

        Args:
            path: Endpoint path (e.g. "/api/v3/klines") or absolute URL
            params: Optional query parameters

        Returns:
            Decoded JSON response

        Raises:
            UpstreamError: HTTP status != 200, timeout, network error, bad JSON
        """
        if not self.session:
            raise UpstreamError(self.source, "client session not initialized")

        url = path if path.startswith("http") else f"{self.base_url}{path}"
        log_api_request(self.source, url, params)
        started = time.monotonic()

        try:
            async with self.session.get(url, params=params) as resp:
                log_api_response(self.source, url, resp.status, time.monotonic() - started)

                if resp.status != 200:
                    text = await resp.text()
                    raise UpstreamError(self.source, f"HTTP {resp.status}: {text[:200]}")

                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamError(self.source, f"malformed JSON: {e}")

        except asyncio.TimeoutError:
            raise UpstreamError(self.source, f"timeout after {self.timeout:.1f}s on {url}")

        except aiohttp.ClientError as e:
            raise UpstreamError(self.source, f"request failed: {e}")


# ============================================
# Payload Parsing Guard
# ============================================

@contextmanager
def parsing(source: str, what: str):
    """
    Turn any exception raised while decoding a provider payload into UpstreamError.

    Example:
        >>> with parsing("binance", "ticker"):
        ...     price = float(payload["lastPrice"])
    """
    try:
        yield
    except UpstreamError:
        raise
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        # pydantic ValidationError is a ValueError
        raise UpstreamError(source, f"malformed {what} payload: {e}")
