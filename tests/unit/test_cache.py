from orchestra.utils.cache import MemoryCache, NullCache, normalize_prompt, response_key, routing_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_normalize_prompt_collapses_whitespace_and_case():
    assert normalize_prompt("  Fix   the\tBUG \n") == "fix the bug"
    assert routing_key("Fix the bug") == routing_key("fix   THE bug ")
    assert routing_key("Fix the bug") != routing_key("Fix a bug")


def test_response_key_depends_on_all_inputs():
    base = response_key("gpt", "sys", [{"role": "user", "content": "hi"}], ["noop"])

    assert base == response_key("gpt", "sys", [{"role": "user", "content": "hi"}], ["noop"])
    assert base != response_key("gpt", "sys", [{"role": "user", "content": "hi"}], [])
    assert base != response_key("other", "sys", [{"role": "user", "content": "hi"}], ["noop"])


def test_least_recently_used_entry_is_evicted():
    cache = MemoryCache(max_size=2, ttl=None)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1

    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = MemoryCache(ttl=10, clock=clock)
    cache.set("k", "v")

    clock.now = 10
    assert cache.get("k") == "v"
    clock.now = 10.5
    assert cache.get("k") is None
    assert len(cache) == 0
    assert cache.hits == 1 and cache.misses == 1


def test_delete_and_clear():
    cache = MemoryCache()
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert len(cache) == 0


def test_null_cache_never_stores():
    cache = NullCache()
    cache.set("k", "v")

    assert cache.get("k") is None
    assert len(cache) == 0
