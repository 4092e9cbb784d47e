from concurrent.futures import ThreadPoolExecutor

import pytest

from core.config import RateLimitConfig, RateLimitRule, load_rate_limit_config_from_env
from core.errors import RateLimited
from core.services.rate_limiter import TokenBucketRateLimiter


def build_limiter(clock, capacity=3, refill=0.0, **kwargs):
    config = RateLimitConfig(
        enabled=kwargs.pop("enabled", True),
        default=RateLimitRule(capacity, refill),
        overrides=kwargs.pop("overrides", {}),
        max_buckets=kwargs.pop("max_buckets", 100),
    )
    return TokenBucketRateLimiter(config, clock=clock)


def test_capacity_blocks_after_limit(clock):
    limiter = build_limiter(clock, capacity=3)
    assert [limiter.try_acquire("u1", "groq") for _ in range(4)] == [True, True, True, False]


def test_tokens_refill_over_time(clock):
    limiter = build_limiter(clock, capacity=2, refill=1.0)
    assert limiter.try_acquire("u1", "groq")
    assert limiter.try_acquire("u1", "groq")
    assert not limiter.try_acquire("u1", "groq")

    clock.advance(1.0)
    assert limiter.try_acquire("u1", "groq")
    assert not limiter.try_acquire("u1", "groq")

    clock.advance(60)
    assert limiter.try_acquire("u1", "groq")
    assert limiter.try_acquire("u1", "groq")
    assert not limiter.try_acquire("u1", "groq")


def test_buckets_isolated_by_user_and_provider(clock):
    limiter = build_limiter(clock, capacity=1)
    assert limiter.try_acquire("u1", "groq")
    assert not limiter.try_acquire("u1", "groq")
    assert limiter.try_acquire("u2", "groq")
    assert limiter.try_acquire("u1", "gemini")


def test_would_admit_does_not_consume(clock):
    limiter = build_limiter(clock, capacity=1)
    assert limiter.would_admit("u1", "groq")
    assert limiter.would_admit("u1", "groq")
    assert limiter.try_acquire("u1", "groq")
    assert not limiter.would_admit("u1", "groq")


def test_provider_override(clock):
    limiter = build_limiter(clock, capacity=5, overrides={"gemini": RateLimitRule(1, 0.0)})
    assert limiter.try_acquire("u1", "gemini")
    assert not limiter.try_acquire("u1", "gemini")
    assert limiter.rule_for("groq").capacity == 5


def test_disabled_limiter_admits_everything(clock):
    limiter = build_limiter(clock, capacity=1, enabled=False)
    assert all(limiter.try_acquire("u1", "groq") for _ in range(10))


def test_admitted_count_never_exceeds_window_budget(clock):
    limiter = build_limiter(clock, capacity=10, refill=2.0)
    admitted = 0
    # 1000 attempts spread over 60 seconds.
    for _ in range(1000):
        if limiter.try_acquire("u1", "groq"):
            admitted += 1
        clock.advance(0.06)
    assert admitted <= 10 + 2.0 * 60


def test_concurrent_acquire_is_exact(clock):
    limiter = build_limiter(clock, capacity=100)
    with ThreadPoolExecutor(max_workers=16) as executor:
        results = list(executor.map(lambda _: limiter.try_acquire("u1", "groq"), range(300)))
    assert results.count(True) == 100


def test_idle_buckets_are_evicted(clock):
    limiter = build_limiter(clock, capacity=1, refill=1.0, max_buckets=2)
    limiter.try_acquire("u1", "groq")
    limiter.try_acquire("u2", "groq")
    clock.advance(5.0)
    limiter.try_acquire("u3", "groq")
    assert limiter.bucket_count() == 2
    assert set(limiter.status("u1")) == set()
    assert set(limiter.status("u2")) == {"groq"}


def test_eviction_never_resets_a_drained_bucket(clock):
    limiter = build_limiter(clock, capacity=1, refill=0.0, max_buckets=1)
    assert limiter.try_acquire("u1", "groq")
    assert limiter.try_acquire("u2", "groq")
    assert not limiter.try_acquire("u1", "groq")
    assert limiter.bucket_count() == 2


def test_env_defaults_are_generous(monkeypatch):
    monkeypatch.delenv("RATE_LIMIT_CAPACITY", raising=False)
    monkeypatch.setenv("RATE_LIMIT_OVERRIDES", '{"gemini": {"capacity": 10, "refill_per_second": 0.5}, "bad": 3}')
    config = load_rate_limit_config_from_env()
    assert config.default.capacity >= 100
    assert config.default.refill_per_second * 60 >= 100
    assert config.overrides == {"gemini": RateLimitRule(10.0, 0.5)}


def test_acquire_raises_when_exhausted(clock):
    limiter = build_limiter(clock, capacity=1)
    limiter.acquire("u1", "groq")
    with pytest.raises(RateLimited) as excinfo:
        limiter.acquire("u1", "groq")
    assert excinfo.value.provider == "groq"
