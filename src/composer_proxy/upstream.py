"""Upstream client for fetching from the real Composer repository."""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, Optional

import aiohttp

from .cache import CacheInfo
from .constants import Constants
from .errors import TransportError
from .logging_utils import Timer, extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

_REDIRECT_STATUSES = (301, 302, 303, 307, 308)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of an upstream GET: fresh content (200) or not modified (304)."""

    url: str
    status: int
    payload: bytes = b""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    content_type: Optional[str] = None

    @property
    def not_modified(self) -> bool:
        return self.status == 304


class UpstreamClient:
    """Client for GET requests against the upstream repository.

    Relative paths resolve against the upstream base URL; absolute URLs
    (distribution archives hosted elsewhere) are fetched as given.
    """

    def __init__(
        self,
        upstream_url: str = Constants.DEFAULT_UPSTREAM,
        timeout: int = Constants.REQUEST_TIMEOUT,
        redirect_allowlist: Optional[Iterable[str]] = None,
        max_redirects: int = Constants.MAX_REDIRECTS,
    ):
        """Initialize the upstream client.

        Args:
            upstream_url: Base URL of the upstream repository.
            timeout: Total timeout per request in seconds.
            redirect_allowlist: Extra hosts redirects may lead to.
            max_redirects: Redirect hops followed before giving up.
        """
        self._upstream = upstream_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        allowlist = Constants.REDIRECT_ALLOWLIST if redirect_allowlist is None else redirect_allowlist
        self._redirect_allowlist = {host.lower() for host in allowlist}
        self._max_redirects = max_redirects

    @property
    def upstream_url(self) -> str:
        return self._upstream

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def build_url(self, path_or_url: str) -> str:
        """Resolve a cache key path or absolute URL to the URL to fetch."""
        if urllib.parse.urlsplit(path_or_url).scheme in ("http", "https"):
            return path_or_url
        return f"{self._upstream}/{path_or_url.lstrip('/')}"

    async def fetch(self, path_or_url: str, cache_info: Optional[CacheInfo] = None) -> FetchResult:
        """GET a resource, conditionally when ``cache_info`` carries validators.

        Raises:
            TransportError: connection failure, timeout, blocked redirect or
                any status other than 200 (and 304 for conditional requests).
        """
        url = self.build_url(path_or_url)
        headers = self._build_request_headers(cache_info)
        conditional = "If-None-Match" in headers or "If-Modified-Since" in headers
        safe_target = safe_url(url)

        with Timer() as timer:
            try:
                async with self.open_response(url, headers) as response:
                    status = response.status
                    if status == 304 and conditional and cache_info is not None:
                        result = FetchResult(
                            url=url,
                            status=304,
                            etag=response.headers.get("ETag") or cache_info.etag,
                            last_modified=(
                                response.headers.get("Last-Modified") or cache_info.last_modified
                            ),
                        )
                    elif status == 200:
                        payload = await response.read()
                        result = FetchResult(
                            url=url,
                            status=200,
                            payload=payload,
                            etag=response.headers.get("ETag"),
                            last_modified=response.headers.get("Last-Modified"),
                            content_type=response.headers.get("Content-Type"),
                        )
                    else:
                        raise TransportError(url, response.reason or "unexpected status", status)
            except TransportError as exc:
                logger.warning(
                    "Upstream returned %s for %s",
                    exc.upstream_status,
                    safe_target,
                    extra=extra_context(
                        event="http_response",
                        component="upstream",
                        outcome="error",
                        status_code=exc.upstream_status,
                        target=safe_target,
                    ),
                )
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                reason = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Upstream request failed for %s: %s",
                    safe_target,
                    reason,
                    extra=extra_context(
                        event="http_error",
                        component="upstream",
                        outcome="exception",
                        target=safe_target,
                    ),
                )
                raise TransportError(url, reason) from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response ok",
                extra=extra_context(
                    event="http_response",
                    component="upstream",
                    action="GET",
                    outcome="not_modified" if result.not_modified else "success",
                    status_code=result.status,
                    duration_ms=timer.duration_ms(),
                    target=safe_target,
                ),
            )
        return result

    @asynccontextmanager
    async def open_response(
        self, url: str, headers: Dict[str, str]
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open an upstream response as an async context manager."""
        if self._session is None:
            await self.start()
        assert self._session is not None
        response = await self._request_with_redirects(url, headers)
        try:
            yield response
        finally:
            response.release()

    def _is_allowed_redirect(self, source_url: str, target_url: str) -> bool:
        """Validate redirect targets to prevent SSRF."""
        target = urllib.parse.urlparse(target_url)
        if target.scheme not in ("http", "https"):
            return False
        if not target.hostname:
            return False

        allowed_hosts = set(self._redirect_allowlist)
        upstream_host = urllib.parse.urlparse(self._upstream).hostname
        if upstream_host:
            allowed_hosts.add(upstream_host.lower())
        source_host = urllib.parse.urlparse(source_url).hostname
        if source_host:
            allowed_hosts.add(source_host.lower())

        target_host = target.hostname.lower()
        for host in allowed_hosts:
            if target_host == host or target_host.endswith(f".{host}"):
                return True
        return False

    async def _request_with_redirects(
        self, url: str, headers: Dict[str, str]
    ) -> aiohttp.ClientResponse:
        """GET ``url`` while enforcing the redirect allowlist."""
        assert self._session is not None
        current_url = url

        for _ in range(self._max_redirects + 1):
            response = await self._session.get(
                current_url,
                headers=headers,
                allow_redirects=False,
            )

            if response.status not in _REDIRECT_STATUSES:
                return response

            location = response.headers.get("Location")
            if not location:
                return response

            next_url = urllib.parse.urljoin(current_url, location)
            response.release()
            if not self._is_allowed_redirect(current_url, next_url):
                raise aiohttp.ClientError(f"Redirect to {safe_url(next_url)} blocked by allowlist")
            current_url = next_url

        raise aiohttp.ClientError("Too many redirects")

    def _build_request_headers(self, cache_info: Optional[CacheInfo]) -> Dict[str, str]:
        """Build request headers, adding validators for conditional GETs."""
        request_headers = {
            "User-Agent": Constants.USER_AGENT,
            "Accept": "*/*",
        }
        if cache_info is not None:
            if cache_info.etag:
                request_headers["If-None-Match"] = cache_info.etag
            if cache_info.last_modified:
                request_headers["If-Modified-Since"] = cache_info.last_modified
        return request_headers

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
