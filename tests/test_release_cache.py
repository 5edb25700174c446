from wanxiang_cli.storage.release_cache import ReleaseCache

URL = "https://api.example.test/releases"


def test_round_trip_and_hit_counting(tmp_path):
    cache = ReleaseCache(tmp_path)

    assert cache.get(URL) is None
    assert cache.set(URL, {"json": [1, 2], "headers": {}})
    assert cache.get(URL) == {"json": [1, 2], "headers": {}}
    assert (cache.hits, cache.misses) == (1, 1)
    assert cache.entry_count() == 1


def test_expired_entries_are_dropped(tmp_path):
    cache = ReleaseCache(tmp_path, ttl_seconds=-1)
    cache.set(URL, "listing")

    assert cache.get(URL) is None
    assert cache.entry_count() == 0


def test_invalidate_and_clear(tmp_path):
    cache = ReleaseCache(tmp_path)
    cache.set(URL, "a")
    cache.set(URL + "?page=2", "b")

    assert cache.invalidate(URL)
    assert not cache.invalidate(URL)
    assert cache.get(URL + "?page=2") == "b"
    assert cache.clear()
    assert cache.entry_count() == 0


def test_unserializable_values_are_not_cached(tmp_path):
    cache = ReleaseCache(tmp_path)

    assert not cache.set(URL, {"bad": object()})
    assert cache.get(URL) is None
