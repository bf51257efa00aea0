"""Asset kinds served by the proxy and their cache key paths."""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from .errors import ContractViolation

VENDOR_TOKEN = "vendor"
PROJECT_TOKEN = "project"
VERSION_TOKEN = "version"
NAME_TOKEN = "name"

PACKAGES_JSON = "packages.json"
LIST_JSON = "packages/list.json"
PROVIDER_JSON = "p/{vendor}/{project}.json"
ZIPBALL = "{vendor}/{project}/{version}/{name}.zip"


class CacheType(Enum):
    """Cache policy classes."""

    METADATA = "metadata"
    CONTENT = "content"


class AssetKind(Enum):
    """Artifacts of the Composer repository protocol."""

    PACKAGES = "packages"
    LIST = "list"
    PROVIDER = "provider"
    ZIPBALL = "zipball"

    @property
    def cache_type(self) -> CacheType:
        """Cache policy class for this kind."""
        if self is AssetKind.ZIPBALL:
            return CacheType.CONTENT
        return CacheType.METADATA

    @property
    def is_static_path(self) -> bool:
        """True if the cache key path does not depend on request tokens."""
        return self in (AssetKind.PACKAGES, AssetKind.LIST)


def _require(tokens: Mapping[str, str], *names: str) -> dict:
    missing = [name for name in names if not tokens.get(name)]
    if missing:
        raise ContractViolation(f"Missing path tokens: {', '.join(missing)}")
    return {name: tokens[name] for name in names}


def provider_path(vendor: str, project: str) -> str:
    """Cache key path of a provider document."""
    return PROVIDER_JSON.format(vendor=vendor, project=project)


def zipball_path(vendor: str, project: str, version: str, name: str) -> str:
    """Cache key path of a distribution archive."""
    return ZIPBALL.format(vendor=vendor, project=project, version=version, name=name)


def cache_key_path(asset_kind: AssetKind, tokens: Mapping[str, str]) -> str:
    """Compute the cache key path for an asset kind and its path tokens.

    The same string is used as the content store key and, for the
    transparently proxied kinds, as the upstream request path.

    Raises:
        ContractViolation: unknown kind or missing tokens.
    """
    if asset_kind is AssetKind.PACKAGES:
        return PACKAGES_JSON
    if asset_kind is AssetKind.LIST:
        return LIST_JSON
    if asset_kind is AssetKind.PROVIDER:
        return provider_path(**_require(tokens, VENDOR_TOKEN, PROJECT_TOKEN))
    if asset_kind is AssetKind.ZIPBALL:
        return zipball_path(
            **_require(tokens, VENDOR_TOKEN, PROJECT_TOKEN, VERSION_TOKEN, NAME_TOKEN)
        )
    raise ContractViolation(f"Unknown asset kind: {asset_kind!r}")
