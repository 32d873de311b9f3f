import os
import tempfile
import threading
import unittest

from qrhunt.media_cache import MediaCache
from qrhunt.storage import InMemoryStorageClient
from qrhunt.tasks import BackgroundTasks


class CountingStorage(InMemoryStorageClient):
    """In-memory storage that counts fetches and can hold them open."""

    def __post_init__(self):
        super().__post_init__()
        self.fetches = []
        self.fetch_started = threading.Event()
        self.release_fetch = threading.Event()
        self.release_fetch.set()

    def get_bytes(self, path: str) -> bytes:
        self.fetches.append(path)
        self.fetch_started.set()
        self.release_fetch.wait(timeout=5)
        return super().get_bytes(path)


class MediaCacheTests(unittest.TestCase):
    def setUp(self):
        self.storage = CountingStorage()
        self.storage.upload_bytes("hunt-media/h1/c1-1.png", b"png-bytes", "image/png")
        self.storage.upload_bytes("hunt-media/h1/c2-1.mp4", b"mp4-bytes", "video/mp4")
        self.tasks = BackgroundTasks(max_workers=2)
        self.cache = MediaCache(self.storage, tasks=self.tasks)

    def tearDown(self):
        self.tasks.shutdown()
        self.cache.close()

    def test_external_url_is_returned_unchanged(self):
        handle = self.cache.resolve("https://cdn.example.com/old.jpg")
        self.assertTrue(handle.external)
        self.assertEqual(handle.url, "https://cdn.example.com/old.jpg")
        self.assertIsNone(handle.data)
        self.assertEqual(self.storage.fetches, [])

    def test_resolve_fetches_once_and_reuses_handle(self):
        first = self.cache.resolve("hunt-media/h1/c1-1.png")
        second = self.cache.resolve("hunt-media/h1/c1-1.png")
        self.assertIs(first, second)
        self.assertEqual(first.data, b"png-bytes")
        self.assertEqual(first.content_type, "image/png")
        self.assertTrue(first.url.startswith("blob:"))
        self.assertEqual(self.storage.fetches, ["hunt-media/h1/c1-1.png"])

    def test_concurrent_resolves_share_one_fetch(self):
        path = "hunt-media/h1/c1-1.png"
        self.storage.release_fetch.clear()
        results = []

        def resolve():
            results.append(self.cache.resolve(path))

        first = threading.Thread(target=resolve)
        second = threading.Thread(target=resolve)
        first.start()
        self.assertTrue(self.storage.fetch_started.wait(timeout=5))
        second.start()
        self.storage.release_fetch.set()
        first.join(timeout=5)
        second.join(timeout=5)

        self.assertEqual(len(results), 2)
        self.assertIs(results[0], results[1])
        self.assertEqual(results[0].data, b"png-bytes")
        self.assertEqual(self.storage.fetches, [path])

    def test_released_handle_is_recreated_from_persistent_cache(self):
        path = "hunt-media/h1/c1-1.png"
        first = self.cache.resolve(path)
        self.cache.release(path)
        self.assertTrue(first.released)
        self.assertIsNone(first.data)

        second = self.cache.resolve(path)
        self.assertIsNot(first, second)
        self.assertEqual(second.data, b"png-bytes")
        self.assertEqual(self.storage.fetches, [path])

    def test_invalidate_forces_fresh_fetch(self):
        path = "hunt-media/h1/c1-1.png"
        self.cache.resolve(path)
        self.storage.upload_bytes(path, b"new-bytes", "image/png")

        self.cache.invalidate(path)
        self.assertFalse(self.cache.is_cached(path))
        handle = self.cache.resolve(path)

        self.assertEqual(handle.data, b"new-bytes")
        self.assertEqual(self.storage.fetches, [path, path])

    def test_invalidate_during_fetch_discards_result(self):
        path = "hunt-media/h1/c1-1.png"
        self.storage.release_fetch.clear()
        results = []
        fetch = threading.Thread(target=lambda: results.append(self.cache.resolve(path)))
        fetch.start()
        self.assertTrue(self.storage.fetch_started.wait(timeout=5))

        self.cache.invalidate(path)
        self.storage.release_fetch.set()
        fetch.join(timeout=5)

        self.assertEqual(results[0].data, b"png-bytes")
        self.assertFalse(self.cache.is_cached(path))
        self.assertIsNot(self.cache.resolve(path), results[0])
        self.assertEqual(self.storage.fetches, [path, path])

    def test_clear_during_fetch_discards_result(self):
        path = "hunt-media/h1/c2-1.mp4"
        self.storage.release_fetch.clear()
        fetch = threading.Thread(target=self.cache.get_file, args=(path,))
        fetch.start()
        self.assertTrue(self.storage.fetch_started.wait(timeout=5))

        self.cache.clear()
        self.storage.release_fetch.set()
        fetch.join(timeout=5)

        self.assertEqual(self.cache.cached_paths(), [])

    def test_missing_blob_raises_and_does_not_cache(self):
        with self.assertRaises(FileNotFoundError):
            self.cache.resolve("hunt-media/h1/missing.png")
        self.assertFalse(self.cache.is_cached("hunt-media/h1/missing.png"))

    def test_prefetch_skips_cached_and_swallows_errors(self):
        self.cache.get_file("hunt-media/h1/c1-1.png")
        with self.assertLogs("qrhunt.media_cache", level="WARNING"):
            future = self.cache.prefetch(
                [
                    "hunt-media/h1/c1-1.png",
                    "hunt-media/h1/missing.png",
                    "hunt-media/h1/c2-1.mp4",
                    "https://cdn.example.com/legacy.jpg",
                    "hunt-media/h1/c2-1.mp4",
                ]
            )
            self.assertEqual(future.result(timeout=5), 1)

        self.assertTrue(self.cache.is_cached("hunt-media/h1/c2-1.mp4"))
        self.assertEqual(
            sorted(self.storage.fetches),
            [
                "hunt-media/h1/c1-1.png",
                "hunt-media/h1/c2-1.mp4",
                "hunt-media/h1/missing.png",
            ],
        )

    def test_prefetch_fetches_in_batches(self):
        paths = [f"hunt-media/h2/c{i}.png" for i in range(7)]
        for path in paths:
            self.storage.upload_bytes(path, path.encode(), "image/png")
        cache = MediaCache(self.storage, tasks=self.tasks, batch_size=3)
        self.assertEqual(cache.prefetch(paths).result(timeout=5), 7)
        self.assertEqual(sorted(cache.cached_paths()), sorted(paths))
        cache.close()

    def test_clear_empties_store_and_releases_handles(self):
        handle = self.cache.resolve("hunt-media/h1/c1-1.png")
        self.cache.get_file("hunt-media/h1/c2-1.mp4")
        self.cache.clear()
        self.assertTrue(handle.released)
        self.assertEqual(self.cache.cached_paths(), [])

    def test_persistent_cache_survives_restart(self):
        with tempfile.TemporaryDirectory() as tmp:
            url = "sqlite+pysqlite:///" + os.path.join(tmp, "media.db")
            first = MediaCache(self.storage, database_url=url, tasks=self.tasks)
            first.resolve("hunt-media/h1/c1-1.png")
            first.close()

            second = MediaCache(self.storage, database_url=url, tasks=self.tasks)
            handle = second.resolve("hunt-media/h1/c1-1.png")
            second.close()

        self.assertEqual(handle.data, b"png-bytes")
        self.assertEqual(self.storage.fetches, ["hunt-media/h1/c1-1.png"])

    def test_fetch_timestamp_recorded(self):
        cache = MediaCache(self.storage, tasks=self.tasks, clock=lambda: 1234.5)
        cache.get_file("hunt-media/h1/c1-1.png")
        self.assertEqual(cache.cached_at("hunt-media/h1/c1-1.png"), 1234.5)
        self.assertIsNone(cache.cached_at("hunt-media/h1/c2-1.mp4"))
        cache.close()


if __name__ == "__main__":
    unittest.main()
