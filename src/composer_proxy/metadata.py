"""Composer JSON document processing.

Handles the three documents the proxy touches:

* ``packages/list.json`` -> synthesised ``packages.json`` pointing clients at
  this proxy's provider endpoint,
* ``p/{vendor}/{project}.json`` -> client-facing copy with every ``dist``
  rewritten to this proxy's archive endpoint,
* ``p/{vendor}/{project}.json`` -> the upstream ``dist.url`` of one version.
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from typing import Any, Dict

from .asset_kind import zipball_path
from .errors import MalformedUpstreamContent, NotFoundInMetadata

logger = logging.getLogger(__name__)

PROVIDERS_URL_SUFFIX = "/p/%package%.json"
PACKAGE_NAMES_KEY = "packageNames"
PACKAGES_KEY = "packages"
PROVIDERS_KEY = "providers"
PROVIDERS_URL_KEY = "providers-url"
DIST_KEY = "dist"
URL_KEY = "url"
SHA256_KEY = "sha256"


def _quote(segment: str) -> str:
    return urllib.parse.quote(segment, safe="")


class ComposerJsonProcessor:
    """Parser/generator for Composer repository metadata documents."""

    def generate_packages_json(self, base_url: str, list_payload: bytes) -> bytes:
        """Build ``packages.json`` from a ``packages/list.json`` payload.

        Args:
            base_url: Public URL of this proxy, without trailing slash.
            list_payload: Raw upstream list document.

        Returns:
            Encoded ``packages.json`` document.

        Raises:
            MalformedUpstreamContent: if the list cannot be parsed.
        """
        document = self._load(list_payload, "packages/list.json")
        names = document.get(PACKAGE_NAMES_KEY) if isinstance(document, dict) else None
        if not isinstance(names, list):
            raise MalformedUpstreamContent(
                f"packages/list.json has no '{PACKAGE_NAMES_KEY}' list"
            )

        providers: Dict[str, Dict[str, Any]] = {}
        for name in names:
            if isinstance(name, str) and name:
                providers[name] = {SHA256_KEY: None}

        packages_json = {
            PACKAGES_KEY: [],
            PROVIDERS_URL_KEY: base_url.rstrip("/") + PROVIDERS_URL_SUFFIX,
            PROVIDERS_KEY: providers,
        }
        return self._dump(packages_json)

    def rewrite_provider_json(self, base_url: str, provider_payload: bytes) -> bytes:
        """Point every version's ``dist`` at this proxy's archive endpoint."""
        document = self._load(provider_payload, "provider metadata")
        packages = self._packages(document)

        base = base_url.rstrip("/")
        for name, versions in packages.items():
            vendor, _, project = name.partition("/")
            if not project or not isinstance(versions, dict):
                logger.debug("Skipping unexpected provider entry %r", name)
                continue
            for version, version_info in versions.items():
                if not isinstance(version_info, dict):
                    continue
                dist = version_info.get(DIST_KEY)
                rewritten = dict(dist) if isinstance(dist, dict) else {}
                rewritten["type"] = "zip"
                rewritten[URL_KEY] = base + "/" + self._quoted_zipball_path(
                    vendor, project, version
                )
                version_info[DIST_KEY] = rewritten

        return self._dump(document)

    def get_dist_url(
        self, vendor: str, project: str, version: str, provider_payload: bytes
    ) -> str:
        """Return the upstream distribution URL for one version.

        Raises:
            NotFoundInMetadata: package or version absent from the document.
            MalformedUpstreamContent: document or dist entry unusable.
        """
        document = self._load(provider_payload, "provider metadata")
        packages = self._packages(document)

        versions = packages.get(f"{vendor}/{project}")
        if versions is None:
            raise NotFoundInMetadata(vendor, project)
        # PHP serializes an empty map as []
        if versions == []:
            raise NotFoundInMetadata(vendor, project, version)
        if not isinstance(versions, dict):
            raise MalformedUpstreamContent(f"Versions of {vendor}/{project} are not an object")

        version_info = versions.get(version)
        if version_info is None:
            raise NotFoundInMetadata(vendor, project, version)

        dist = version_info.get(DIST_KEY) if isinstance(version_info, dict) else None
        url = dist.get(URL_KEY) if isinstance(dist, dict) else None
        if not isinstance(url, str) or not url:
            raise MalformedUpstreamContent(
                f"{vendor}/{project} {version} has no distribution URL"
            )
        return url

    @staticmethod
    def archive_name(vendor: str, project: str, version: str) -> str:
        """File name (without ``.zip``) used in rewritten archive URLs."""
        return f"{vendor}-{project}-{version}".replace("/", "-")

    def _quoted_zipball_path(self, vendor: str, project: str, version: str) -> str:
        return zipball_path(
            _quote(vendor),
            _quote(project),
            _quote(version),
            _quote(self.archive_name(vendor, project, version)),
        )

    @staticmethod
    def _packages(document: Any) -> Dict[str, Any]:
        packages = document.get(PACKAGES_KEY) if isinstance(document, dict) else None
        if packages == []:
            return {}
        if not isinstance(packages, dict):
            raise MalformedUpstreamContent(f"Provider metadata has no '{PACKAGES_KEY}' object")
        return packages

    @staticmethod
    def _load(payload: bytes, what: str) -> Any:
        try:
            return json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise MalformedUpstreamContent(f"Unparseable {what}: {exc}") from exc

    @staticmethod
    def _dump(document: Any) -> bytes:
        return json.dumps(document, separators=(",", ":")).encode("utf-8")
