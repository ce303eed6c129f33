"""
HTTP JSON client shared by the enrichment adapters.

Wraps ``httpx.AsyncClient`` and turns every upstream outcome into either a
decoded JSON body, ``None`` (404, entity absent), or a typed
:mod:`nexus_spine.core.errors` exception. Adapters never look at status
codes themselves.

Response mapping:
    ::

        2xx                                  → decoded JSON
        404                                  → None
        429, or 403 + x-ratelimit-remaining=0 → RateLimitError
        5xx                                  → SourceUnavailableError
        other non-2xx                        → UpstreamResponseError
        httpx.TimeoutException               → UpstreamTimeoutError
        httpx.TransportError                 → NetworkError
        body is not JSON                     → ParseError

Guardrails:
    ❌ DON'T: Call ``response.raise_for_status()`` in an adapter
    ✅ DO: Let this client classify the response so rate limits stay typed

Tags:
    http, httpx, json, error-mapping, rate-limit

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any

import httpx

from nexus_spine.core.errors import (
    NetworkError,
    ParseError,
    RateLimitError,
    SourceUnavailableError,
    UpstreamResponseError,
    UpstreamTimeoutError,
)
from nexus_spine.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15.0


def _parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class HttpJsonClient:
    """Async JSON-over-HTTP client with typed error mapping.

    Args:
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``httpx.MockTransport``). Owned by the caller when given.
        timeout: Default per-request timeout in seconds.
        user_agent: ``User-Agent`` header sent with every request.
        headers: Extra default headers.

    Example:
        async with HttpJsonClient(timeout=15.0, user_agent="nexus-spine") as http:
            org = await http.get_json("https://api.github.com/orgs/nasa")
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        self._timeout = timeout
        self._headers = dict(headers or {})
        if user_agent:
            self._headers.setdefault("User-Agent", user_agent)
        self._client = client
        self._owns_client = client is None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpJsonClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── Public API ───────────────────────────────────────────────

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any | None:
        """GET ``url`` and decode JSON. Returns ``None`` on 404."""
        return await self._request("GET", url, params=params, headers=headers, timeout=timeout)

    async def post_json(
        self,
        url: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any | None:
        """POST a JSON body to ``url`` and decode JSON. Returns ``None`` on 404."""
        return await self._request("POST", url, json=json, headers=headers, timeout=timeout)

    # ── Internals ────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any | None:
        merged = {**self._headers, **(headers or {})}
        effective_timeout = timeout if timeout is not None else self._timeout
        try:
            response = await self._get_client().request(
                method,
                url,
                params=params,
                json=json,
                headers=merged,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Request timed out after {effective_timeout}s", cause=e
            ).with_context(url=url) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}", cause=e).with_context(url=url) from e

        return self._handle_response(response, url)

    def _handle_response(self, response: httpx.Response, url: str) -> Any | None:
        status = response.status_code

        if status == 404:
            logger.debug("http.not_found", url=url)
            return None

        if status == 429 or (
            status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset_at = response.headers.get("x-ratelimit-reset")
            message = "Rate limit exceeded"
            if reset_at:
                message = f"Rate limit exceeded, resets at {reset_at}"
            raise RateLimitError(
                message,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
                reset_at=reset_at,
            ).with_context(url=url, http_status=status)

        if status >= 500:
            raise SourceUnavailableError(
                f"HTTP {status} {response.reason_phrase}"
            ).with_context(url=url, http_status=status)

        if not response.is_success:
            raise UpstreamResponseError(
                f"HTTP {status} {response.reason_phrase}", status_code=status
            ).with_context(url=url)

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON in response: {e}", cause=e).with_context(url=url) from e


__all__ = ["DEFAULT_TIMEOUT", "HttpJsonClient"]
