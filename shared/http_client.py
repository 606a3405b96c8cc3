"""
HTTP client utilities for provider and service communication.
"""

import asyncio
from typing import Any

import aiohttp


class HTTPResponseError(Exception):
    """Raised for non-2xx responses; keeps status, headers and decoded body."""

    def __init__(self, status: int, headers: dict[str, str] | None = None, payload: Any = None) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status
        self.headers = headers or {}
        self.payload = payload


class AsyncHTTPClient:
    """Async HTTP client for outbound JSON calls."""

    def __init__(self, timeout: float = 30) -> None:
        """Initialize HTTP client."""
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "AsyncHTTPClient":
        """Enter async context manager."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self.session:
            await self.session.close()

    @staticmethod
    async def _prepare_request(coro_or_ctx: Any) -> Any:
        """Normalize aiohttp request result to an async context manager."""
        if asyncio.iscoroutine(coro_or_ctx):
            return await coro_or_ctx
        return coro_or_ctx

    @staticmethod
    async def _ensure_response_ok(response: Any) -> None:
        """Raise HTTPResponseError carrying the decoded body for non-2xx statuses."""
        status = response.status
        if isinstance(status, int) and status >= 400:
            try:
                payload = await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError):
                payload = None
            raise HTTPResponseError(status, dict(response.headers or {}), payload)

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")
        return self.session

    async def get(
        self,
        url: str,
        headers: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform GET request."""
        session = self._require_session()
        request_ctx = await self._prepare_request(session.get(url, headers=headers, params=params))
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()

    async def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform POST request."""
        session = self._require_session()
        request_ctx = await self._prepare_request(session.post(url, json=data, headers=headers))
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()
