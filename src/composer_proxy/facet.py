"""Proxy facet: decides, per request, whether to serve from cache or fetch.

The facet never reaches for its own routing layer directly. Requests that need
another repository resource (``packages.json`` needs the package list, an
archive needs its provider document) go through the ``dispatch`` callable
carried on the :class:`RequestContext`.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .asset_kind import (
    AssetKind,
    CacheType,
    LIST_JSON,
    PACKAGES_JSON,
    PROJECT_TOKEN,
    VENDOR_TOKEN,
    VERSION_TOKEN,
    cache_key_path,
    provider_path,
)
from .cache import CacheInfo, CachePolicy, KeyedLocks, default_policies
from .constants import Constants
from .errors import ContractViolation, TransportError
from .logging_utils import extra_context, is_debug_enabled
from .metadata import ComposerJsonProcessor
from .storage import ContentStore, StoredContent
from .upstream import FetchResult, UpstreamClient

logger = logging.getLogger(__name__)

# Request attribute suppressing client-facing rewriting of provider documents
DO_NOT_REWRITE = "do_not_rewrite"

Dispatch = Callable[[str, Mapping[str, Any]], Awaitable[Any]]


@dataclass
class RequestContext:
    """Per-request state, owned by one request's handling flow."""

    asset_kind: AssetKind
    tokens: Dict[str, str]
    cache_policy: CachePolicy
    dispatch: Dispatch
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        """Cache key path of the requested asset."""
        return cache_key_path(self.asset_kind, self.tokens)


class ComposerProxyFacet:
    """Fetch-or-serve logic for the four Composer asset kinds."""

    def __init__(
        self,
        store: ContentStore,
        upstream: UpstreamClient,
        processor: ComposerJsonProcessor,
        base_url: str,
        policies: Optional[Mapping[CacheType, CachePolicy]] = None,
    ):
        self._store = store
        self._upstream = upstream
        self._processor = processor
        self._base_url = base_url.rstrip("/")
        self._policies = dict(policies) if policies is not None else default_policies()
        self._locks = KeyedLocks()

    @property
    def store(self) -> ContentStore:
        return self._store

    def cache_policy(self, asset_kind: AssetKind) -> CachePolicy:
        """Resolve the cache policy for an asset kind."""
        try:
            return self._policies[asset_kind.cache_type]
        except (AttributeError, KeyError) as exc:
            raise ContractViolation(f"No cache policy for {asset_kind!r}") from exc

    def in_flight(self) -> int:
        return self._locks.in_flight()

    async def get(self, context: RequestContext) -> StoredContent:
        """Serve the asset from cache, revalidating or fetching as needed."""
        path = context.path
        policy = context.cache_policy

        cached = await self._store.get(path)
        if cached is not None and not policy.is_stale(cached.cache_info):
            self._log_outcome("cache_hit", context, path)
            return cached

        # One upstream fetch per key; waiters re-check the store afterwards
        async with self._locks.hold(path):
            cached = await self._store.get(path)
            if cached is not None and not policy.is_stale(cached.cache_info):
                self._log_outcome("cache_hit", context, path)
                return cached
            return await self._refresh(context, path, cached)

    async def _refresh(
        self, context: RequestContext, path: str, cached: Optional[StoredContent]
    ) -> StoredContent:
        try:
            remote = await self.fetch(context, cached)
        except TransportError as exc:
            if cached is not None and context.cache_policy.serve_stale_on_error:
                logger.warning(
                    "Serving stale %s: %s",
                    path,
                    exc,
                    extra=extra_context(
                        event="cache_stale_served",
                        component="facet",
                        asset_kind=context.asset_kind.value,
                        target=path,
                    ),
                )
                return cached
            raise

        if remote.not_modified:
            if cached is None:
                raise ContractViolation(f"Not-modified answer for uncached {path}")
            return await self.indicate_verified(context, path, cached, remote)

        stored = await self.store(context, path, remote)
        self._log_outcome("cache_store" if cached is None else "cache_replace", context, path)
        return stored

    async def fetch(
        self, context: RequestContext, cached: Optional[StoredContent] = None
    ) -> FetchResult:
        """Obtain fresh content for the request.

        ``packages.json`` is synthesised from the package list and never
        requested from upstream.
        """
        if context.asset_kind is AssetKind.PACKAGES:
            payload = await self._generate_packages_json(context)
            return FetchResult(
                url=PACKAGES_JSON,
                status=200,
                payload=payload,
                content_type=Constants.JSON_CONTENT_TYPE,
            )

        url = await self.get_url(context)
        validators = None
        if (
            cached is not None
            and context.cache_policy.revalidate
            and cached.cache_info.has_validators
        ):
            validators = cached.cache_info
        return await self._upstream.fetch(url, validators)

    async def get_url(self, context: RequestContext) -> str:
        """Origin of the asset: the cache key path, or the resolved archive URL."""
        asset_kind = context.asset_kind
        if asset_kind is AssetKind.ZIPBALL:
            return await self._get_zipball_url(context)
        if asset_kind in (AssetKind.LIST, AssetKind.PROVIDER):
            return context.path
        if asset_kind is AssetKind.PACKAGES:
            raise ContractViolation("packages.json is generated, it has no upstream URL")
        raise ContractViolation(f"Unknown asset kind: {asset_kind!r}")

    async def store(
        self, context: RequestContext, path: str, remote: FetchResult
    ) -> StoredContent:
        """Write fetched content with fresh cache metadata."""
        cache_info = CacheInfo(etag=remote.etag, last_modified=remote.last_modified)
        if context.asset_kind is AssetKind.ZIPBALL:
            content_type = Constants.ZIP_CONTENT_TYPE
        else:
            content_type = Constants.JSON_CONTENT_TYPE
        return await self._store.put(
            path, remote.payload, context.asset_kind, cache_info, content_type
        )

    async def indicate_verified(
        self,
        context: RequestContext,
        path: str,
        cached: StoredContent,
        remote: FetchResult,
    ) -> StoredContent:
        """Upstream confirmed the stored copy; refresh its metadata only."""
        cache_info = CacheInfo(
            fetched_at=cached.cache_info.fetched_at,
            etag=remote.etag or cached.cache_info.etag,
            last_modified=remote.last_modified or cached.cache_info.last_modified,
        )
        await self._store.set_cache_info(path, cached, cache_info)
        self._log_outcome("cache_verified", context, path)
        return cached.with_cache_info(cache_info)

    async def _generate_packages_json(self, context: RequestContext) -> bytes:
        response = await context.dispatch("/" + LIST_JSON, {})
        return self._processor.generate_packages_json(self._base_url, response.payload)

    async def _get_zipball_url(self, context: RequestContext) -> str:
        """Resolve an archive request to its upstream dist URL.

        Only vendor, project and version take part in the lookup. The file
        name is not checked against ``ComposerJsonProcessor.archive_name``:
        it only selects the cache entry, so two names for one version are
        stored separately and each fetches the archive once. Rewritten
        provider documents always hand out the canonical name.
        """
        vendor = context.tokens.get(VENDOR_TOKEN)
        project = context.tokens.get(PROJECT_TOKEN)
        version = context.tokens.get(VERSION_TOKEN)
        if not (vendor and project and version):
            raise ContractViolation("Archive request without vendor/project/version")

        provider = "/" + provider_path(_quote(vendor), _quote(project))
        # The resolver needs upstream's dist URL, not the client-facing one
        response = await context.dispatch(provider, {DO_NOT_REWRITE: True})
        url = self._processor.get_dist_url(vendor, project, version, response.payload)
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved %s/%s %s to %s",
                vendor,
                project,
                version,
                url,
                extra=extra_context(event="zipball_resolved", component="facet", target=url),
            )
        return url

    @staticmethod
    def _log_outcome(event: str, context: RequestContext, path: str) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "%s %s",
                event,
                path,
                extra=extra_context(
                    event=event,
                    component="facet",
                    asset_kind=context.asset_kind.value,
                    target=path,
                ),
            )


def _quote(segment: str) -> str:
    return urllib.parse.quote(segment, safe="")
