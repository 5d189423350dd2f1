from free_llm_router.core.ratelimit import RateLimiter, TtlCache


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_fixed_window_counts_and_resets():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    first = limiter.hit("k", limit=2, window_seconds=60)
    assert (first.limited, first.remaining) == (False, 1)
    assert limiter.hit("k", 2, 60).remaining == 0

    clock.now += 15
    blocked = limiter.hit("k", 2, 60)
    assert blocked.limited is True
    assert blocked.retry_after == 45
    assert blocked.headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1060",
        "Retry-After": "45",
    }

    clock.now += 45
    fresh = limiter.hit("k", 2, 60)
    assert fresh.limited is False
    assert fresh.reset_at == 1120
    assert "Retry-After" not in fresh.headers()


def test_usage_reads_the_window_without_counting():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    assert limiter.usage("k") == (0, None)

    limiter.hit("k", 5, 60)
    limiter.hit("k", 5, 60)
    assert limiter.usage("k") == (2, 1060)
    assert limiter.usage("k") == (2, 1060)

    clock.now += 60
    assert limiter.usage("k") == (0, None)

def test_keys_are_independent():
    limiter = RateLimiter(clock=FakeClock())
    assert limiter.hit("a", 1, 60).limited is False
    assert limiter.hit("a", 1, 60).limited is True
    assert limiter.hit("b", 1, 60).limited is False

    limiter.reset()
    assert limiter.hit("a", 1, 60).limited is False


def test_expired_windows_are_pruned_when_full():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock, max_entries=2)
    limiter.hit("a", 5, 10)
    limiter.hit("b", 5, 10)
    clock.now += 11
    limiter.hit("c", 5, 10)
    assert set(limiter._windows) == {"c"}


def test_ttl_cache_expiry_and_eviction():
    clock = FakeClock()
    cache = TtlCache(ttl_seconds=60, clock=clock, max_entries=2)
    cache.set("a", b"1")
    clock.now += 1
    cache.set("b", b"2")
    assert cache.get("a") == b"1"

    cache.set("c", b"3")
    assert cache.get("a") is None
    assert cache.get("c") == b"3"

    clock.now += 60
    assert cache.get("b") is None
    cache.clear()
    assert cache.get("c") is None
