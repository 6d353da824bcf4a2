"""
HTTP transport for the Ethplorer API.

Thin aiohttp wrapper: one lazily created session, a per-request timeout,
JSON decoding and translation of API-level ``{"error": {...}}`` bodies into
``TransportError``. Retry policy belongs to the callers.
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from pool_monitor.exceptions import TransportError


logger = logging.getLogger(__name__)


class LedgerTransport:
    """Async HTTP client shared by the fetcher, token cache and pool manager."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._request_count = 0

    @property
    def request_count(self) -> int:
        return self._request_count

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "PoolMonitor/1.0",
        }

    async def get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """GET ``url`` and return the decoded JSON body."""
        return await self._make_request("GET", url, params=params)

    async def post_form(
        self,
        url: str,
        fields: dict[str, Any],
    ) -> Any:
        """POST ``fields`` as multipart form data and return the decoded JSON body."""
        form = aiohttp.FormData()
        for name, value in fields.items():
            form.add_field(name, str(value))
        return await self._make_request("POST", url, data=form)

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        data: Optional[aiohttp.FormData] = None,
    ) -> Any:
        """Make HTTP request with error handling."""
        session = await self._get_session()
        self._request_count += 1

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                data=data,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                body = await response.text()
                elapsed = time.time() - start_time
                logger.debug(f"[transport] {method} {url} finished in {elapsed:.2f} s.")

                payload = self._decode(body, url, response.status)

                if response.status >= 400:
                    error_code, message = self._api_error(payload)
                    raise TransportError(
                        message=message or f"HTTP {response.status}",
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                        error_code=error_code,
                    )

                if isinstance(payload, dict) and payload.get("error"):
                    error_code, message = self._api_error(payload)
                    raise TransportError(
                        message=message or "API error",
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                        error_code=error_code,
                    )

                return payload

        except aiohttp.ClientError as e:
            raise TransportError(
                message=f"Connection error: {e}",
                request_url=url,
                original_error=e,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                message=f"Request timed out after {self._timeout}s",
                request_url=url,
                original_error=e,
            )

    @staticmethod
    def _decode(body: str, url: str, status: int) -> Any:
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            if status >= 400:
                return None
            raise TransportError(
                message="Impossible to parse JSON body",
                status_code=status,
                response_body=body[:500],
                request_url=url,
                original_error=e,
            )

    @staticmethod
    def _api_error(payload: Any) -> tuple[Optional[int], Optional[str]]:
        """Extract ``(code, message)`` from an ``{"error": {...}}`` body."""
        if not isinstance(payload, dict):
            return None, None
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            try:
                code = int(code) if code is not None else None
            except (TypeError, ValueError):
                code = None
            return code, error.get("message")
        if error:
            return None, str(error)
        return None, None

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "LedgerTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
