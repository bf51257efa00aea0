"""Tests for asset kinds and cache key paths."""

import pytest

from composer_proxy.asset_kind import AssetKind, CacheType, cache_key_path
from composer_proxy.errors import ContractViolation

TOKENS = {"vendor": "acme", "project": "widget", "version": "1.0.0", "name": "widget-1.0.0"}


class TestCacheKeyPath:
    """Tests for cache key path construction."""

    def test_package_index_path(self):
        """The package index has a static path."""
        assert cache_key_path(AssetKind.PACKAGES, {}) == "packages.json"

    def test_package_list_path(self):
        """The package list has a static path."""
        assert cache_key_path(AssetKind.LIST, {}) == "packages/list.json"

    def test_provider_path(self):
        """Provider paths come from vendor and project."""
        tokens = {"vendor": "acme", "project": "widget"}
        assert cache_key_path(AssetKind.PROVIDER, tokens) == "p/acme/widget.json"

    def test_zipball_path(self):
        """Archive paths come from vendor, project, version and name."""
        assert cache_key_path(AssetKind.ZIPBALL, TOKENS) == "acme/widget/1.0.0/widget-1.0.0.zip"

    @pytest.mark.parametrize("kind", list(AssetKind))
    def test_path_is_pure(self, kind):
        """Identical inputs always give identical paths."""
        first = cache_key_path(kind, dict(TOKENS))
        second = cache_key_path(kind, dict(TOKENS))
        assert first == second

    def test_static_paths_ignore_tokens(self):
        """Static kinds do not depend on tokens."""
        for kind in AssetKind:
            if kind.is_static_path:
                assert cache_key_path(kind, TOKENS) == cache_key_path(kind, {})

    def test_missing_tokens_rejected(self):
        """A provider request without a project is a routing bug."""
        with pytest.raises(ContractViolation):
            cache_key_path(AssetKind.PROVIDER, {"vendor": "acme"})
        with pytest.raises(ContractViolation):
            cache_key_path(AssetKind.ZIPBALL, {"vendor": "acme", "project": "widget"})

    def test_unknown_kind_rejected(self):
        """Values outside the enum raise ContractViolation."""
        with pytest.raises(ContractViolation):
            cache_key_path("zipball", TOKENS)


class TestCacheTypes:
    """Tests for the asset kind to cache type mapping."""

    def test_archives_are_content(self):
        assert AssetKind.ZIPBALL.cache_type is CacheType.CONTENT

    def test_documents_are_metadata(self):
        for kind in (AssetKind.PACKAGES, AssetKind.LIST, AssetKind.PROVIDER):
            assert kind.cache_type is CacheType.METADATA
