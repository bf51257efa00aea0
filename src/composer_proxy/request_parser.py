"""Request parser for classifying Composer repository paths."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, Optional

from .asset_kind import (
    AssetKind,
    NAME_TOKEN,
    PROJECT_TOKEN,
    VENDOR_TOKEN,
    VERSION_TOKEN,
)


@dataclass
class ParsedRequest:
    """Result of parsing a repository request path."""

    asset_kind: AssetKind
    tokens: Dict[str, str] = field(default_factory=dict)
    raw_path: str = ""

    @property
    def vendor(self) -> Optional[str]:
        return self.tokens.get(VENDOR_TOKEN)

    @property
    def project(self) -> Optional[str]:
        return self.tokens.get(PROJECT_TOKEN)

    @property
    def version(self) -> Optional[str]:
        return self.tokens.get(VERSION_TOKEN)

    @property
    def package_name(self) -> Optional[str]:
        """Composer package name, ``vendor/project``."""
        if self.vendor and self.project:
            return f"{self.vendor}/{self.project}"
        return None


class RequestParser:
    """Parser extracting asset kind and tokens from request paths.

    Patterns run against the still percent-encoded path so an encoded slash
    inside a version (``dev-feature%2Ffoo``) stays inside its segment.
    """

    # /packages.json - root package index
    _PACKAGES_PATTERN = re.compile(r"^/packages\.json$")
    # /packages/list.json - package name listing
    _LIST_PATTERN = re.compile(r"^/packages/list\.json$")
    # /p/{vendor}/{project}.json - provider metadata
    _PROVIDER_PATTERN = re.compile(r"^/p/([^/]+)/([^/]+)\.json$")
    # /{vendor}/{project}/{version}/{name}.zip - distribution archive
    _ZIPBALL_PATTERN = re.compile(r"^/([^/]+)/([^/]+)/([^/]+)/([^/]+)\.zip$")

    _FORBIDDEN_SEGMENTS = {"", ".", ".."}

    def parse(self, path: str) -> Optional[ParsedRequest]:
        """Parse a request path.

        Args:
            path: Raw (percent-encoded) URL path, query string excluded.

        Returns:
            ParsedRequest, or None when the path is not one of the four
            repository shapes.
        """
        if not path.startswith("/"):
            path = "/" + path

        if self._PACKAGES_PATTERN.match(path):
            return ParsedRequest(AssetKind.PACKAGES, {}, path)

        if self._LIST_PATTERN.match(path):
            return ParsedRequest(AssetKind.LIST, {}, path)

        match = self._PROVIDER_PATTERN.match(path)
        if match:
            tokens = self._decode(match.groups(), (VENDOR_TOKEN, PROJECT_TOKEN))
            if tokens is None:
                return None
            return ParsedRequest(AssetKind.PROVIDER, tokens, path)

        match = self._ZIPBALL_PATTERN.match(path)
        if match:
            tokens = self._decode(
                match.groups(),
                (VENDOR_TOKEN, PROJECT_TOKEN, VERSION_TOKEN, NAME_TOKEN),
            )
            if tokens is None:
                return None
            return ParsedRequest(AssetKind.ZIPBALL, tokens, path)

        return None

    def _decode(self, groups, names) -> Optional[Dict[str, str]]:
        """Unquote matched segments, rejecting traversal-like values."""
        tokens = {}
        for name, raw in zip(names, groups):
            value = urllib.parse.unquote(raw)
            parts = value.split("/")
            if any(part in self._FORBIDDEN_SEGMENTS for part in parts):
                return None
            if "\\" in value or "\x00" in value:
                return None
            # Only versions may legitimately carry an encoded slash
            if "/" in value and name != VERSION_TOKEN:
                return None
            tokens[name] = value
        return tokens
