import threading

from netclient.cache import ENDPOINT_CACHE, EndpointCacheValue, SyncMap


def test_store_and_load():
    cache = SyncMap()
    cache.store("peer", EndpointCacheValue(("192.0.2.1", 51821)))
    assert cache.load("peer") == EndpointCacheValue(("192.0.2.1", 51821))
    assert "peer" in cache


def test_load_missing_returns_none():
    cache = SyncMap()
    assert cache.load("absent") is None
    assert "absent" not in cache


def test_delete_removes_and_ignores_missing():
    cache = SyncMap()
    cache.store("a", 1)
    cache.delete("a")
    cache.delete("a")
    assert cache.load("a") is None
    assert len(cache) == 0


def test_store_overwrites():
    cache = SyncMap()
    cache.store("a", 1)
    cache.store("a", 2)
    assert cache.load("a") == 2
    assert len(cache) == 1


def test_items_is_snapshot():
    cache = SyncMap()
    cache.store("a", 1)
    cache.store("b", 2)
    snapshot = cache.items()
    cache.store("c", 3)
    assert sorted(snapshot) == [("a", 1), ("b", 2)]
    assert len(cache.items()) == 3


def test_concurrent_stores():
    cache = SyncMap()
    threads_count = 4
    per_thread = 100

    def worker(index):
        for n in range(per_thread):
            cache.store((index, n), n)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(cache) == threads_count * per_thread


def test_module_cache_shared():
    ENDPOINT_CACHE.store("test-peer", EndpointCacheValue())
    try:
        assert ENDPOINT_CACHE.load("test-peer") == EndpointCacheValue(None)
    finally:
        ENDPOINT_CACHE.delete("test-peer")
    assert ENDPOINT_CACHE.load("test-peer") is None