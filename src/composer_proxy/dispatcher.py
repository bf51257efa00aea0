"""Request dispatching, shared by the HTTP layer and internal lookups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .asset_kind import AssetKind
from .cache import CacheInfo
from .errors import ContractViolation
from .facet import DO_NOT_REWRITE, ComposerProxyFacet, RequestContext
from .metadata import ComposerJsonProcessor
from .request_parser import ParsedRequest, RequestParser


@dataclass(frozen=True)
class ProxyResponse:
    """Payload handed back to a client or an internal caller."""

    path: str
    asset_kind: AssetKind
    payload: bytes
    content_type: str
    cache_info: CacheInfo


class Dispatcher:
    """Classifies repository paths and runs them through the facet.

    Provider documents are rewritten for clients on the way out, so the store
    always holds upstream's original. Internal callers pass
    ``do_not_rewrite`` to get that original back.
    """

    def __init__(
        self,
        facet: ComposerProxyFacet,
        processor: ComposerJsonProcessor,
        base_url: str,
        parser: Optional[RequestParser] = None,
    ):
        self._facet = facet
        self._processor = processor
        self._base_url = base_url.rstrip("/")
        self._parser = parser or RequestParser()

    def parse(self, path: str) -> Optional[ParsedRequest]:
        return self._parser.parse(path)

    async def dispatch(
        self, path: str, attributes: Optional[Mapping[str, Any]] = None
    ) -> ProxyResponse:
        """Serve a repository path from inside the proxy.

        Raises:
            ContractViolation: ``path`` is not a repository path; internal
                callers only ever build valid ones.
        """
        parsed = self._parser.parse(path)
        if parsed is None:
            raise ContractViolation(f"Internal dispatch to unroutable path {path!r}")
        return await self.handle(parsed, attributes)

    async def handle(
        self, parsed: ParsedRequest, attributes: Optional[Mapping[str, Any]] = None
    ) -> ProxyResponse:
        """Run an already classified request through the facet."""
        context = RequestContext(
            asset_kind=parsed.asset_kind,
            tokens=dict(parsed.tokens),
            cache_policy=self._facet.cache_policy(parsed.asset_kind),
            dispatch=self.dispatch,
            attributes=dict(attributes or {}),
        )
        content = await self._facet.get(context)

        payload = content.payload
        if context.asset_kind is AssetKind.PROVIDER and not context.attributes.get(DO_NOT_REWRITE):
            payload = self._processor.rewrite_provider_json(self._base_url, payload)

        return ProxyResponse(
            path=content.path,
            asset_kind=content.asset_kind,
            payload=payload,
            content_type=content.content_type,
            cache_info=content.cache_info,
        )
