"""Tests for content stores."""

import asyncio
import json

from composer_proxy.asset_kind import AssetKind
from composer_proxy.cache import CacheInfo
from composer_proxy.storage import FileContentStore, MemoryContentStore


class TestMemoryContentStore:
    """Tests for MemoryContentStore."""

    def test_get_missing(self):
        store = MemoryContentStore()
        assert asyncio.run(store.get("packages.json")) is None

    def test_put_then_get(self):
        """Stored entries come back with their metadata."""
        store = MemoryContentStore()
        info = CacheInfo(fetched_at=1.0, last_verified=1.0, etag='"x"')

        async def _run():
            await store.put("p/acme/widget.json", b"{}", AssetKind.PROVIDER, info,
                            "application/json")
            return await store.get("p/acme/widget.json")

        content = asyncio.run(_run())
        assert content.payload == b"{}"
        assert content.asset_kind is AssetKind.PROVIDER
        assert content.cache_info == info
        assert content.content_type == "application/json"

    def test_set_cache_info_keeps_payload(self):
        """Only metadata changes on set_cache_info."""
        store = MemoryContentStore()

        async def _run():
            content = await store.put("k", b"payload", AssetKind.LIST,
                                      CacheInfo(fetched_at=1.0, last_verified=1.0))
            await store.set_cache_info("k", content, CacheInfo(fetched_at=1.0, last_verified=9.0))
            return content, await store.get("k")

        original, updated = asyncio.run(_run())
        assert updated.payload == b"payload"
        assert updated.cache_info.last_verified == 9.0
        assert original.cache_info.last_verified == 1.0

    def test_stats(self):
        store = MemoryContentStore()
        asyncio.run(store.put("k", b"1234", AssetKind.LIST, CacheInfo()))
        stats = store.stats()
        assert stats["total_entries"] == 1
        assert stats["total_bytes"] == 4


class TestFileContentStore:
    """Tests for FileContentStore."""

    def test_persists_across_instances(self, tmp_path):
        """A new store over the same directory sees earlier writes."""
        info = CacheInfo(fetched_at=1.0, last_verified=2.0, last_modified="yesterday")
        asyncio.run(FileContentStore(str(tmp_path)).put(
            "acme/widget/1.0.0/widget-1.0.0.zip", b"PK\x03\x04", AssetKind.ZIPBALL, info,
            "application/zip",
        ))

        content = asyncio.run(
            FileContentStore(str(tmp_path)).get("acme/widget/1.0.0/widget-1.0.0.zip")
        )

        assert content.payload == b"PK\x03\x04"
        assert content.asset_kind is AssetKind.ZIPBALL
        assert content.cache_info == info
        assert content.content_type == "application/zip"

    def test_missing_entry(self, tmp_path):
        assert asyncio.run(FileContentStore(str(tmp_path)).get("packages.json")) is None

    def test_set_cache_info(self, tmp_path):
        """Metadata updates leave the payload file alone."""
        store = FileContentStore(str(tmp_path))

        async def _run():
            content = await store.put("k", b"abc", AssetKind.LIST,
                                      CacheInfo(fetched_at=1.0, last_verified=1.0))
            await store.set_cache_info("k", content, CacheInfo(fetched_at=1.0, last_verified=5.0))
            return await store.get("k")

        content = asyncio.run(_run())
        assert content.payload == b"abc"
        assert content.cache_info.last_verified == 5.0

    def test_digest_mismatch_is_a_miss(self, tmp_path):
        """A payload not matching its sidecar is discarded."""
        store = FileContentStore(str(tmp_path))
        asyncio.run(store.put("k", b"original", AssetKind.LIST, CacheInfo()))

        _, blob_file, _ = store._locate("k")
        blob_file.write_bytes(b"tampered")

        assert asyncio.run(store.get("k")) is None

    def test_corrupt_metadata_is_a_miss(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        asyncio.run(store.put("k", b"data", AssetKind.LIST, CacheInfo()))

        _, _, meta_file = store._locate("k")
        meta_file.write_text("{broken", encoding="utf-8")

        assert asyncio.run(store.get("k")) is None

    def test_keys_do_not_escape_root(self, tmp_path):
        """Keys are hashed, so path-like keys stay under the root."""
        store = FileContentStore(str(tmp_path / "cache"))
        asyncio.run(store.put("../../outside", b"x", AssetKind.LIST, CacheInfo()))

        assert not (tmp_path / "outside").exists()
        meta_files = list((tmp_path / "cache").glob("*/*.json"))
        assert len(meta_files) == 1
        assert json.loads(meta_files[0].read_text())["path"] == "../../outside"

    def test_stats(self, tmp_path):
        store = FileContentStore(str(tmp_path))
        asyncio.run(store.put("a", b"12", AssetKind.LIST, CacheInfo()))
        asyncio.run(store.put("b", b"345", AssetKind.LIST, CacheInfo()))
        stats = store.stats()
        assert stats["engine"] == "file"
        assert stats["total_entries"] == 2
        assert stats["total_bytes"] == 5


class TestMemoryContentStoreLimits:
    """Tests for MemoryContentStore size bounds."""

    def test_byte_limit_evicts_oldest(self):
        store = MemoryContentStore(max_entries=100, max_bytes=1000)

        async def _run():
            for i in range(20):
                await store.put(f"k{i}", b"x" * 100, AssetKind.ZIPBALL, CacheInfo())
            return await store.get("k0"), await store.get("k19")

        oldest, newest = asyncio.run(_run())
        stats = store.stats()

        assert oldest is None
        assert newest is not None
        assert stats["total_bytes"] <= 1000
        assert stats["total_entries"] == 10
        assert stats["evictions"] == 10

    def test_entry_limit_evicts_oldest(self):
        store = MemoryContentStore(max_entries=10, max_bytes=10**6)

        async def _run():
            for i in range(11):
                await store.put(f"k{i}", b"{}", AssetKind.PROVIDER, CacheInfo())

        asyncio.run(_run())

        assert store.stats()["total_entries"] == 10
        assert asyncio.run(store.get("k0")) is None
        assert asyncio.run(store.get("k10")) is not None

    def test_oversized_payload_returned_but_not_kept(self):
        """Payloads above a tenth of the byte limit are not retained."""
        store = MemoryContentStore(max_entries=10, max_bytes=1000)

        async def _run():
            content = await store.put("big", b"x" * 101, AssetKind.ZIPBALL, CacheInfo())
            return content, await store.get("big")

        content, cached = asyncio.run(_run())

        assert content.payload == b"x" * 101
        assert cached is None
        assert store.stats()["total_bytes"] == 0

    def test_replacing_entry_keeps_byte_count(self):
        store = MemoryContentStore()

        async def _run():
            await store.put("k", b"1234", AssetKind.LIST, CacheInfo())
            content = await store.put("k", b"12", AssetKind.LIST, CacheInfo())
            await store.set_cache_info("k", content, CacheInfo(last_verified=3.0))

        asyncio.run(_run())

        assert store.stats()["total_bytes"] == 2
        assert store.stats()["total_entries"] == 1


class TestFileContentStoreThreading:
    """Blocking file I/O runs in worker threads."""

    def test_io_runs_off_the_event_loop(self, tmp_path, monkeypatch):
        store = FileContentStore(str(tmp_path))
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

        async def _run():
            content = await store.put("k", b"data", AssetKind.ZIPBALL, CacheInfo())
            await store.set_cache_info("k", content, CacheInfo(last_verified=2.0))
            return await store.get("k")

        content = asyncio.run(_run())

        assert offloaded == ["_write_entry", "_write_meta", "_read_entry"]
        assert content.payload == b"data"
        assert content.cache_info.last_verified == 2.0

    def test_loop_keeps_running_during_large_write(self, tmp_path):
        """Other coroutines make progress while an archive is stored."""
        store = FileContentStore(str(tmp_path))
        payload = b"x" * (32 * 1024 * 1024)

        async def _run():
            ticks = 0
            done = asyncio.Event()

            async def ticker():
                nonlocal ticks
                while not done.is_set():
                    ticks += 1
                    await asyncio.sleep(0)

            task = asyncio.ensure_future(ticker())
            await store.put("big.zip", payload, AssetKind.ZIPBALL, CacheInfo())
            await store.get("big.zip")
            done.set()
            await task
            return ticks

        assert asyncio.run(_run()) > 1
