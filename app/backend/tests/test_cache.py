import sys
import os
import threading
import pytest
from pydantic import ValidationError

# Add backend to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crop_ai.cache import AIResponseCache, CacheConfig, get_cache_config


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_cache(clock, **overrides) -> AIResponseCache:
    return AIResponseCache(CacheConfig(**overrides), clock=clock)


def test_get_returns_value_within_ttl(clock):
    cache = make_cache(clock)
    cache.set("k", {"answer": "Use neem oil"}, "chat")
    clock.advance(60)
    assert cache.get("k") == {"answer": "Use neem oil"}


def test_chat_entry_expires_after_ttl(clock):
    """A 10 minute chat entry is a miss 11 minutes later."""
    cache = make_cache(clock, chat_ttl=600)
    cache.set("k", "answer", "chat")
    clock.advance(11 * 60)
    assert cache.get("k") is None
    stats = cache.get_stats()
    assert stats.misses == 1
    assert stats.size == 0


def test_expiry_is_inclusive_of_deadline(clock):
    cache = make_cache(clock, chat_ttl=600)
    cache.set("k", "answer", "chat")
    clock.advance(600)
    assert cache.get("k") is None


def test_ttl_depends_on_operation_type(clock):
    cache = make_cache(clock, chat_ttl=60, planning_ttl=3600, diagnosis_ttl=7200, default_ttl=120)
    cache.set("chat", "c", "chat")
    cache.set("plan", "p", "planning")
    cache.set("diag", "d", "diagnosis")
    cache.set("other", "o", "weather")
    clock.advance(90)
    assert cache.get("chat") is None
    assert cache.get("plan") == "p"
    assert cache.get("diag") == "d"
    assert cache.get("other") == "o"
    clock.advance(60)
    assert cache.get("other") is None


def test_evicts_oldest_inserted_on_overflow(clock):
    cache = make_cache(clock, max_size=2)
    cache.set("A", 1, "chat")
    cache.set("B", 2, "chat")
    cache.set("C", 3, "chat")
    assert not cache.has("A")
    assert cache.has("B")
    assert cache.has("C")
    assert cache.get_stats().size == 2


def test_access_does_not_protect_from_eviction(clock):
    cache = make_cache(clock, max_size=2)
    cache.set("A", 1, "chat")
    cache.set("B", 2, "chat")
    assert cache.get("A") == 1
    cache.set("C", 3, "chat")
    assert cache.get("A") is None
    assert cache.get("B") == 2


def test_size_never_exceeds_max(clock):
    cache = make_cache(clock, max_size=5)
    for i in range(50):
        cache.set(f"k{i}", i, "planning")
        assert cache.get_stats().size <= 5
    assert [cache.has(f"k{i}") for i in range(45, 50)] == [True] * 5
    assert not cache.has("k44")


def test_overwrite_does_not_evict_and_refreshes_value(clock):
    cache = make_cache(clock, max_size=2, chat_ttl=600)
    cache.set("A", 1, "chat")
    cache.set("B", 2, "chat")
    clock.advance(500)
    cache.set("A", 10, "chat")
    assert cache.get_stats().size == 2
    clock.advance(200)
    # A was rewritten so its TTL restarted, B has expired
    assert cache.get("A") == 10
    assert cache.get("B") is None


def test_overwritten_key_becomes_newest(clock):
    cache = make_cache(clock, max_size=2)
    cache.set("A", 1, "chat")
    cache.set("B", 2, "chat")
    cache.set("A", 3, "chat")
    cache.set("C", 4, "chat")
    assert cache.has("A")
    assert not cache.has("B")


def test_hit_rate(clock):
    cache = make_cache(clock)
    assert cache.get_stats().hit_rate == 0
    cache.set("k", "v", "chat")
    cache.get("k")
    cache.get("k")
    cache.get("k")
    cache.get("missing")
    stats = cache.get_stats()
    assert stats.hits == 3
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(75.0)


def test_clear_empties_store_and_returns_count(clock):
    cache = make_cache(clock)
    for i in range(3):
        cache.set(f"k{i}", i, "chat")
    cache.get("k0")
    assert cache.clear() == 3
    stats = cache.get_stats()
    assert stats.size == 0
    assert stats.hits == 0
    assert stats.misses == 0


def test_stats_breakdown_age_and_memory(clock):
    cache = make_cache(clock)
    cache.set("c1", "short answer", "chat")
    cache.set("c2", "another", "chat")
    clock.advance(30)
    cache.set("p1", {"recommendedCrops": []}, "planning")
    stats = cache.get_stats()
    assert stats.entries_by_type == {"chat": 2, "diagnosis": 0, "planning": 1}
    assert stats.average_age == pytest.approx(20.0)
    assert stats.memory_estimate > 3 * 1024
    assert stats.max_size == 500


def test_stats_on_empty_cache(clock):
    stats = make_cache(clock).get_stats()
    assert stats.size == 0
    assert stats.average_age == 0
    assert stats.memory_estimate == 0


def test_disabled_cache_always_misses(clock):
    cache = make_cache(clock, enabled=False)
    cache.set("k", "v", "chat")
    assert cache.get("k") is None
    assert not cache.has("k")
    stats = cache.get_stats()
    assert stats.size == 0
    assert stats.hits == 0
    assert stats.misses == 0


def test_cleanup_removes_only_expired(clock):
    cache = make_cache(clock, chat_ttl=60, planning_ttl=3600)
    cache.set("c", "v", "chat")
    cache.set("p", "v", "planning")
    clock.advance(120)
    assert cache.cleanup() == 1
    assert cache.has("p")
    assert cache.get_stats().size == 1


def test_delete(clock):
    cache = make_cache(clock)
    cache.set("k", "v", "chat")
    assert cache.delete("k") is True
    assert cache.delete("k") is False


def test_get_config_is_a_copy(clock):
    cache = make_cache(clock, max_size=10)
    config = cache.get_config()
    config.max_size = 99
    assert cache.get_config().max_size == 10
    cache.update_config(enabled=False)
    assert cache.get_config().enabled is False


def test_config_from_environment(monkeypatch):
    monkeypatch.setenv("AI_CACHE_MAX_SIZE", "42")
    monkeypatch.setenv("AI_CACHE_CHAT_TTL_SECONDS", "600")
    monkeypatch.setenv("AI_CACHE_ENABLED", "false")
    config = get_cache_config()
    assert config.max_size == 42
    assert config.chat_ttl == 600
    assert config.enabled is False
    assert config.planning_ttl == 43200


def test_zero_max_size_stores_nothing(clock):
    cache = make_cache(clock, max_size=0)
    cache.set("k", "v", "chat")
    assert cache.get("k") is None
    assert cache.get_stats().size == 0


def test_shrinking_max_size_evicts_oldest(clock):
    cache = make_cache(clock, max_size=5)
    for i in range(5):
        cache.set(f"k{i}", i, "chat")
    cache.update_config(max_size=2)
    assert cache.get_stats().size == 2
    assert cache.has("k3")
    assert cache.has("k4")
    cache.set("new", 99, "chat")
    assert cache.get_stats().size == 2
    assert not cache.has("k3")
    assert cache.has("new")


def test_update_config_validates_values(clock):
    cache = make_cache(clock)
    cache.update_config(enabled="false")
    assert cache.get_config().enabled is False
    cache.set("k", "v", "chat")
    assert cache.get("k") is None
    with pytest.raises(ValidationError):
        cache.update_config(max_size=-1)
    with pytest.raises(ValidationError):
        cache.update_config(max_size="lots")
    assert cache.get_config().max_size == 500


def test_size_counts_only_live_entries(clock):
    cache = make_cache(clock, chat_ttl=60, planning_ttl=3600)
    cache.set("c", "v", "chat")
    cache.set("p", "v", "planning")
    clock.advance(120)
    stats = cache.get_stats()
    assert stats.size == 1
    assert sum(stats.entries_by_type.values()) == stats.size


def test_concurrent_sets_on_same_key_keep_one_entry(clock):
    cache = make_cache(clock)
    barrier = threading.Barrier(8)

    def writer(n):
        barrier.wait()
        for _ in range(200):
            cache.set("shared", n, "chat")

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert cache.get_stats().size == 1
    assert cache.get("shared") in range(8)
