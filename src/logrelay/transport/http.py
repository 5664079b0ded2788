"""JSON-over-HTTP client shared by every REST adapter.

Failures surface as ``HttpError`` with a category a caller (or a human) can
act on. Only transient categories are retried.

Usage::

    client = JsonHttpClient("http://jellyfin:8096", {"X-Emby-Token": key})
    try:
        info = await client.get_json("/System/Info")
    finally:
        await client.close()
"""
from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from enum import Enum
from typing import Any, Mapping

import aiohttp

from ..config import settings

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    DNS = "dns"
    CONNECTION_REFUSED = "connection_refused"
    SSL = "ssl"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


_SUGGESTIONS: dict[ErrorCategory, str] = {
    ErrorCategory.TIMEOUT: "The server took too long to respond. Check that it is running and not overloaded.",
    ErrorCategory.NETWORK: "The connection dropped. Check network connectivity between this host and the server.",
    ErrorCategory.DNS: "The hostname could not be resolved. Check the server URL.",
    ErrorCategory.CONNECTION_REFUSED: "Nothing is listening at that address. Check the host and port.",
    ErrorCategory.SSL: "TLS negotiation failed. Check the certificate or use http:// for plain connections.",
    ErrorCategory.UNAUTHORIZED: "The API key was rejected. Generate a new key in the server settings.",
    ErrorCategory.NOT_FOUND: "The endpoint does not exist. Check the server URL and version.",
    ErrorCategory.SERVER_ERROR: "The server reported an internal error. Check its logs.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred.",
}

RETRYABLE: frozenset[ErrorCategory] = frozenset(
    {ErrorCategory.TIMEOUT, ErrorCategory.NETWORK, ErrorCategory.SERVER_ERROR}
)


class HttpError(Exception):
    """A categorized REST failure."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        url: str,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.url = url
        self.status = status

    @property
    def suggestion(self) -> str:
        return _SUGGESTIONS[self.category]

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE


def error_for_status(status: int, url: str, reason: str | None = None) -> HttpError:
    """Build the HttpError for a non-2xx response."""
    text = f"HTTP {status}" + (f" {reason}" if reason else "") + f" from {url}"
    if status in (401, 403):
        category = ErrorCategory.UNAUTHORIZED
    elif status == 404:
        category = ErrorCategory.NOT_FOUND
    elif status >= 500:
        category = ErrorCategory.SERVER_ERROR
    else:
        category = ErrorCategory.UNKNOWN
    return HttpError(text, category, url, status)


def classify(exc: BaseException, url: str) -> HttpError:
    """Map a transport-level exception to an HttpError."""
    if isinstance(exc, HttpError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return HttpError(f"Request to {url} timed out", ErrorCategory.TIMEOUT, url)
    if isinstance(exc, (aiohttp.ClientSSLError, ssl.SSLError)):
        return HttpError(f"TLS error talking to {url}: {exc}", ErrorCategory.SSL, url)
    if isinstance(exc, aiohttp.ClientConnectorError):
        os_error = exc.os_error
        if isinstance(os_error, socket.gaierror):
            return HttpError(f"Cannot resolve host for {url}", ErrorCategory.DNS, url)
        if isinstance(os_error, ConnectionRefusedError):
            return HttpError(f"Connection refused by {url}", ErrorCategory.CONNECTION_REFUSED, url)
        return HttpError(f"Cannot connect to {url}: {exc}", ErrorCategory.NETWORK, url)
    if isinstance(exc, (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError, aiohttp.ClientPayloadError)):
        return HttpError(f"Connection to {url} failed: {exc}", ErrorCategory.NETWORK, url)
    return HttpError(f"Request to {url} failed: {exc}", ErrorCategory.UNKNOWN, url)


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str] | None:
    # aiohttp rejects bools and None in query strings
    if not params:
        return None
    cleaned: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned


class JsonHttpClient:
    """Lazy ``aiohttp`` session bound to one base URL and a header set.

    Args:
        base_url:     Server URL without a trailing slash.
        headers:      Sent with every request (auth, accept).
        timeout:      Total per-request timeout in seconds.
        retries:      Extra attempts for timeout, network and 5xx failures.
        retry_delay:  Base delay; attempt ``n`` waits ``retry_delay * n``.
    """

    def __init__(
        self,
        base_url: str,
        headers: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._timeout = settings.http_timeout if timeout is None else timeout
        self._retries = settings.http_retries if retries is None else retries
        self._retry_delay = settings.http_retry_delay if retry_delay is None else retry_delay
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._headers,
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET ``base_url + path`` and decode the JSON body, retrying transient failures."""
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                return await self._request_once(url, _clean_params(params))
            except HttpError as err:
                if not err.retryable or attempt >= self._retries:
                    raise
                attempt += 1
                logger.warning("%s; retrying (%d/%d)", err, attempt, self._retries)
                await asyncio.sleep(self._retry_delay * attempt)

    async def _request_once(self, url: str, params: dict[str, str] | None) -> Any:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    raise error_for_status(response.status, url, response.reason)
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except HttpError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ssl.SSLError) as exc:
            raise classify(exc, url) from exc
