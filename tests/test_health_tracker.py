from concurrent.futures import ThreadPoolExecutor

from core.config import HealthConfig
from core.services.health import ProviderHealthTracker


def build_tracker(clock, **overrides):
    params = dict(failure_threshold=3, failure_window_seconds=60, cooldown_seconds=30)
    params.update(overrides)
    return ProviderHealthTracker(HealthConfig(**params), providers=["groq"], clock=clock)


def test_single_failure_does_not_blacklist(clock):
    tracker = build_tracker(clock)
    tracker.record_outcome("groq", False, 120.0)
    assert tracker.is_available("groq")
    tracker.record_outcome("groq", False, 120.0)
    assert tracker.is_available("groq")


def test_k_failures_within_window_trip_provider(clock):
    tracker = build_tracker(clock)
    for _ in range(3):
        tracker.record_outcome("groq", False, 50.0)
        clock.advance(1)
    assert tracker.is_available("groq") is False
    assert tracker.snapshot("groq")["state"] == "open"


def test_failures_spread_beyond_window_do_not_trip(clock):
    tracker = build_tracker(clock)
    tracker.record_outcome("groq", False, 10.0)
    clock.advance(40)
    tracker.record_outcome("groq", False, 10.0)
    clock.advance(30)
    tracker.record_outcome("groq", False, 10.0)
    assert tracker.is_available("groq")

    clock.advance(10)
    tracker.record_outcome("groq", False, 10.0)
    assert tracker.is_available("groq") is False


def test_cooldown_expires_into_single_trial_attempt(clock):
    tracker = build_tracker(clock)
    for _ in range(3):
        tracker.record_outcome("groq", False, 10.0)
    clock.advance(29)
    assert tracker.is_available("groq") is False

    clock.advance(1)
    assert tracker.is_available("groq")
    assert tracker.snapshot("groq")["state"] == "half_open"
    assert tracker.try_begin_attempt("groq") is True
    assert tracker.try_begin_attempt("groq") is False
    assert tracker.is_available("groq") is False


def test_failed_trial_attempt_reopens_immediately(clock):
    tracker = build_tracker(clock)
    for _ in range(3):
        tracker.record_outcome("groq", False, 10.0)
    clock.advance(30)
    assert tracker.try_begin_attempt("groq")
    tracker.record_outcome("groq", False, 10.0)
    assert tracker.is_available("groq") is False

    clock.advance(30)
    assert tracker.is_available("groq")


def test_success_clears_unavailable_state(clock):
    tracker = build_tracker(clock)
    for _ in range(3):
        tracker.record_outcome("groq", False, 10.0)
    assert tracker.is_available("groq") is False

    # A late success arriving during cooldown also clears it.
    tracker.record_outcome("groq", True, 10.0)
    assert tracker.is_available("groq")
    snapshot = tracker.snapshot("groq")
    assert snapshot["state"] == "closed"
    assert snapshot["consecutive_failures"] == 0


def test_released_trial_attempt_can_be_retried(clock):
    tracker = build_tracker(clock)
    for _ in range(3):
        tracker.record_outcome("groq", False, 10.0)
    clock.advance(30)
    assert tracker.try_begin_attempt("groq")
    tracker.release_attempt("groq")
    assert tracker.is_available("groq")
    assert tracker.try_begin_attempt("groq")


def test_latency_is_exponentially_weighted(clock):
    tracker = build_tracker(clock, latency_alpha=0.5)
    tracker.record_outcome("groq", True, 100.0)
    tracker.record_outcome("groq", True, 200.0)
    tracker.record_outcome("groq", False, 300.0)
    snapshot = tracker.snapshot("groq")
    assert snapshot["avg_latency_ms"] == 225.0
    assert snapshot["failure_rate"] == round(1 / 3, 4)
    assert snapshot["attempts"] == 3


def test_outcome_ring_is_bounded(clock):
    tracker = build_tracker(clock, outcome_window=4)
    for _ in range(10):
        tracker.record_outcome("groq", True, 1.0)
    tracker.record_outcome("groq", False, 1.0)
    assert tracker.snapshot("groq")["failure_rate"] == 0.25


def test_status_lists_known_providers(clock):
    tracker = ProviderHealthTracker(HealthConfig(), providers=["groq", "gemini"], clock=clock)
    status = tracker.status()
    assert set(status) == {"groq", "gemini"}
    assert status["gemini"]["available"] is True
    assert status["gemini"]["avg_latency_ms"] is None


def test_concurrent_updates_are_counted_once_each(clock):
    tracker = build_tracker(clock, failure_threshold=1000)

    def record(index):
        tracker.record_outcome("groq", index % 2 == 0, float(index))

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(record, range(400)))

    snapshot = tracker.snapshot("groq")
    assert snapshot["attempts"] == 400
    assert snapshot["available"] is True
