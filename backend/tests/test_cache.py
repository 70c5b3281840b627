"""결과 캐시 테스트."""
from core.cache import ResultCache


class TestResultCache:

    def test_set_and_get(self):
        cache = ResultCache(default_ttl=60)
        cache.set("query:1", [{"id": 1}])
        assert cache.get("query:1") == [{"id": 1}]
        assert cache.get("query:2") is None

    def test_expired_entry_is_dropped(self):
        cache = ResultCache(default_ttl=60)
        cache.set("query:1", "rows", ttl=0)
        assert cache.get("query:1") is None
        assert cache.stats()["total_keys"] == 0

    def test_invalidate_prefix(self):
        cache = ResultCache()
        cache.set(ResultCache.dashboard_key("d1"), "a")
        cache.set(ResultCache.dashboard_key("d1") + ":widget:1", "b")
        cache.set(ResultCache.dashboard_key("d2"), "c")

        assert cache.invalidate_prefix(ResultCache.dashboard_key("d1")) == 2
        assert cache.get("dashboard:d2") == "c"

    def test_stats_counts_hits_and_misses(self):
        cache = ResultCache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["active_keys"] == 1
