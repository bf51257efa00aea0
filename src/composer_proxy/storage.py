"""Content stores keyed by cache key path.

Entries are immutable. Updates swap a whole entry in one step, so a reader
sees either the previous payload with its metadata or the new pair, never a
mix of the two.
"""

from __future__ import annotations

import abc
import asyncio
import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .asset_kind import AssetKind
from .cache import CacheInfo
from .constants import Constants
from .logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredContent:
    """A payload with its cache metadata."""

    path: str
    payload: bytes
    asset_kind: AssetKind
    cache_info: CacheInfo
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.payload)

    def with_cache_info(self, cache_info: CacheInfo) -> "StoredContent":
        return replace(self, cache_info=cache_info)


class ContentStore(metaclass=abc.ABCMeta):
    """Storage engine interface consumed by the proxy facet."""

    @abc.abstractmethod
    async def get(self, path: str) -> Optional[StoredContent]:
        """Return the stored entry for ``path`` or None."""

    @abc.abstractmethod
    async def put(
        self,
        path: str,
        payload: bytes,
        asset_kind: AssetKind,
        cache_info: CacheInfo,
        content_type: str = "application/octet-stream",
    ) -> StoredContent:
        """Store ``payload`` with fresh metadata, replacing any previous entry."""

    @abc.abstractmethod
    async def set_cache_info(
        self, path: str, content: StoredContent, cache_info: CacheInfo
    ) -> None:
        """Replace the metadata of an entry without rewriting its payload."""

    @abc.abstractmethod
    def stats(self) -> Dict[str, Any]:
        """Store statistics for the health endpoint."""


class MemoryContentStore(ContentStore):
    """In-process store; contents are lost on restart.

    Bounded by entry count and total payload bytes. The oldest entries are
    evicted first, and payloads larger than a tenth of the byte limit are
    handed back without being kept.
    """

    def __init__(
        self,
        max_entries: int = Constants.MEMORY_MAX_ENTRIES,
        max_bytes: int = Constants.MEMORY_MAX_BYTES,
    ) -> None:
        self._entries: Dict[str, StoredContent] = {}
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._current_bytes = 0
        self._evictions = 0

    async def get(self, path: str) -> Optional[StoredContent]:
        return self._entries.get(path)

    async def put(
        self,
        path: str,
        payload: bytes,
        asset_kind: AssetKind,
        cache_info: CacheInfo,
        content_type: str = "application/octet-stream",
    ) -> StoredContent:
        content = StoredContent(path, payload, asset_kind, cache_info, content_type)
        self._insert(content)
        return content

    async def set_cache_info(
        self, path: str, content: StoredContent, cache_info: CacheInfo
    ) -> None:
        current = self._entries.get(path, content)
        self._insert(current.with_cache_info(cache_info))

    def stats(self) -> Dict[str, Any]:
        return {
            "engine": "memory",
            "total_entries": len(self._entries),
            "total_bytes": self._current_bytes,
            "max_entries": self._max_entries,
            "max_bytes": self._max_bytes,
            "evictions": self._evictions,
        }

    def _insert(self, content: StoredContent) -> None:
        self._remove_entry(content.path)

        if content.size > self._max_bytes // 10:
            logger.debug("Not keeping %s in memory (%d bytes)", content.path, content.size)
            return

        # Evict if needed to make room
        while self._current_bytes + content.size > self._max_bytes and self._entries:
            self._evict_oldest(1)

        self._entries[content.path] = content
        self._current_bytes += content.size

        if len(self._entries) > self._max_entries:
            self._evict_oldest(max(1, self._max_entries // 10))

    def _remove_entry(self, path: str) -> None:
        entry = self._entries.pop(path, None)
        if entry is not None:
            self._current_bytes -= entry.size

    def _evict_oldest(self, count: int) -> None:
        """Evict the oldest entries; dict order is insertion order."""
        for path in list(self._entries)[:count]:
            self._remove_entry(path)
            self._evictions += 1


class FileContentStore(ContentStore):
    """Filesystem store surviving restarts.

    Each key maps to ``<root>/<sha256(key)[:2]>/<sha256(key)>`` holding the
    payload plus a ``.json`` sidecar with the metadata and the payload digest.
    Files are written to temporaries and moved into place with
    ``os.replace``; a sidecar whose digest does not match its payload (a crash
    between the two moves) is treated as a miss.
    """

    def __init__(self, root: str) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _locate(self, path: str):
        digest = hashlib.sha256(path.encode("utf-8")).hexdigest()
        directory = self._root / digest[:2]
        return directory, directory / digest, directory / f"{digest}.json"

    async def get(self, path: str) -> Optional[StoredContent]:
        return await asyncio.to_thread(self._read_entry, path)

    async def put(
        self,
        path: str,
        payload: bytes,
        asset_kind: AssetKind,
        cache_info: CacheInfo,
        content_type: str = "application/octet-stream",
    ) -> StoredContent:
        content = StoredContent(path, payload, asset_kind, cache_info, content_type)
        await asyncio.to_thread(self._write_entry, content)
        if is_debug_enabled(logger):
            logger.debug(
                "Stored %s (%d bytes)",
                path,
                len(payload),
                extra=extra_context(event="cache_store", component="storage", target=path),
            )
        return content

    async def set_cache_info(
        self, path: str, content: StoredContent, cache_info: CacheInfo
    ) -> None:
        await asyncio.to_thread(self._write_meta, content.with_cache_info(cache_info))

    def _read_entry(self, path: str) -> Optional[StoredContent]:
        _, blob_file, meta_file = self._locate(path)
        try:
            meta = json.loads(meta_file.read_text(encoding="utf-8"))
            payload = blob_file.read_bytes()
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable cache entry for %s: %s", path, exc)
            return None

        if meta.get("path") != path or meta.get("sha256") != hashlib.sha256(payload).hexdigest():
            logger.warning(
                "Discarding inconsistent cache entry for %s",
                path,
                extra=extra_context(event="cache_corrupt", component="storage", target=path),
            )
            return None

        try:
            return StoredContent(
                path=path,
                payload=payload,
                asset_kind=AssetKind(meta["asset_kind"]),
                cache_info=CacheInfo.from_dict(meta["cache_info"]),
                content_type=meta.get("content_type", "application/octet-stream"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Invalid cache metadata for %s: %s", path, exc)
            return None

    def _write_entry(self, content: StoredContent) -> None:
        # Payload first: a sidecar never points at a missing or partial blob
        directory, blob_file, _ = self._locate(content.path)
        directory.mkdir(parents=True, exist_ok=True)
        self._atomic_write(blob_file, content.payload)
        self._write_meta(content)

    def _write_meta(self, content: StoredContent) -> None:
        directory, _, meta_file = self._locate(content.path)
        directory.mkdir(parents=True, exist_ok=True)
        self._atomic_write(meta_file, self._encode_meta(content))

    def stats(self) -> Dict[str, Any]:
        entries = 0
        total_bytes = 0
        for meta_file in self._root.glob("*/*.json"):
            entries += 1
            blob_file = meta_file.with_suffix("")
            try:
                total_bytes += blob_file.stat().st_size
            except OSError:
                continue
        return {
            "engine": "file",
            "root": str(self._root),
            "total_entries": entries,
            "total_bytes": total_bytes,
        }

    @staticmethod
    def _encode_meta(content: StoredContent) -> bytes:
        meta = {
            "path": content.path,
            "asset_kind": content.asset_kind.value,
            "content_type": content.content_type,
            "sha256": hashlib.sha256(content.payload).hexdigest(),
            "cache_info": content.cache_info.to_dict(),
        }
        return json.dumps(meta, sort_keys=True).encode("utf-8")

    @staticmethod
    def _atomic_write(target: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
