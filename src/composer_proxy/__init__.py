"""Composer proxy package.

This package provides a caching reverse proxy for Composer package
repositories. It serves the package index, the package list, provider
metadata and distribution archives, and rewrites archive URLs so downloads
flow back through the proxy.
"""

from .asset_kind import AssetKind, CacheType, cache_key_path
from .cache import CacheInfo, CachePolicy
from .dispatcher import Dispatcher, ProxyResponse
from .errors import (
    ContractViolation,
    MalformedUpstreamContent,
    NotFoundInMetadata,
    ProxyError,
    TransportError,
)
from .facet import ComposerProxyFacet, RequestContext
from .metadata import ComposerJsonProcessor
from .request_parser import ParsedRequest, RequestParser
from .server import ComposerProxyServer, ProxyConfig
from .storage import FileContentStore, MemoryContentStore, StoredContent
from .upstream import FetchResult, UpstreamClient

__all__ = [
    "AssetKind",
    "CacheType",
    "cache_key_path",
    "CacheInfo",
    "CachePolicy",
    "Dispatcher",
    "ProxyResponse",
    "ContractViolation",
    "MalformedUpstreamContent",
    "NotFoundInMetadata",
    "ProxyError",
    "TransportError",
    "ComposerProxyFacet",
    "RequestContext",
    "ComposerJsonProcessor",
    "ParsedRequest",
    "RequestParser",
    "ComposerProxyServer",
    "ProxyConfig",
    "FileContentStore",
    "MemoryContentStore",
    "StoredContent",
    "FetchResult",
    "UpstreamClient",
]
