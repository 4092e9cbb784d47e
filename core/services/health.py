"""
Per-provider health tracking.

Each provider has a closed/open/half-open breaker. K failures inside a
W-second window open it for T seconds; once the cooldown passes, one
speculative attempt is allowed (half-open). A success closes the breaker,
a failure while half-open reopens it immediately.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Iterable, Optional

from core.config import HealthConfig

STATE_CLOSED = "closed"
STATE_OPEN = "open"
STATE_HALF_OPEN = "half_open"


class _ProviderState:
    __slots__ = (
        "failure_times",
        "outcomes",
        "avg_latency_ms",
        "consecutive_failures",
        "tripped",
        "cooldown_until",
        "probing",
        "total_attempts",
        "last_error",
    )

    def __init__(self, config: HealthConfig):
        self.failure_times: deque[float] = deque(maxlen=config.failure_threshold)
        self.outcomes: deque[bool] = deque(maxlen=config.outcome_window)
        self.avg_latency_ms: Optional[float] = None
        self.consecutive_failures = 0
        self.tripped = False
        self.cooldown_until = 0.0
        self.probing = False
        self.total_attempts = 0
        self.last_error: Optional[str] = None


class ProviderHealthTracker:
    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        providers: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or HealthConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, _ProviderState] = {}
        for name in providers:
            self._states[name] = _ProviderState(self._config)

    def _state(self, provider: str) -> _ProviderState:
        state = self._states.get(provider)
        if state is None:
            state = _ProviderState(self._config)
            self._states[provider] = state
        return state

    def _phase(self, state: _ProviderState, now: float) -> str:
        if not state.tripped:
            return STATE_CLOSED
        if now < state.cooldown_until:
            return STATE_OPEN
        return STATE_HALF_OPEN

    def _trip(self, state: _ProviderState, now: float) -> None:
        state.tripped = True
        state.cooldown_until = now + self._config.cooldown_seconds
        state.failure_times.clear()

    def record_outcome(
        self,
        provider: str,
        success: bool,
        latency_ms: float,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            now = self._clock()
            state = self._state(provider)
            state.total_attempts += 1
            state.outcomes.append(bool(success))
            if latency_ms is not None and latency_ms >= 0:
                if state.avg_latency_ms is None:
                    state.avg_latency_ms = float(latency_ms)
                else:
                    alpha = self._config.latency_alpha
                    state.avg_latency_ms = alpha * latency_ms + (1 - alpha) * state.avg_latency_ms
            state.probing = False

            if success:
                state.consecutive_failures = 0
                state.failure_times.clear()
                state.tripped = False
                state.cooldown_until = 0.0
                return

            state.consecutive_failures += 1
            state.last_error = error
            phase = self._phase(state, now)
            if phase == STATE_HALF_OPEN:
                self._trip(state, now)
                return
            if phase == STATE_OPEN:
                # Late result from an attempt that started before the trip.
                return
            state.failure_times.append(now)
            window_start = now - self._config.failure_window_seconds
            if (
                len(state.failure_times) >= self._config.failure_threshold
                and state.failure_times[0] >= window_start
            ):
                self._trip(state, now)

    def is_available(self, provider: str) -> bool:
        with self._lock:
            state = self._states.get(provider)
            if state is None:
                return True
            phase = self._phase(state, self._clock())
            if phase == STATE_OPEN:
                return False
            if phase == STATE_HALF_OPEN:
                return not state.probing
            return True

    def try_begin_attempt(self, provider: str) -> bool:
        """Claim an attempt slot; only one speculative attempt runs while half-open."""
        with self._lock:
            state = self._state(provider)
            phase = self._phase(state, self._clock())
            if phase == STATE_OPEN:
                return False
            if phase == STATE_HALF_OPEN:
                if state.probing:
                    return False
                state.probing = True
            return True

    def release_attempt(self, provider: str) -> None:
        """Give back a claimed slot without recording an outcome (cancelled or never sent)."""
        with self._lock:
            state = self._states.get(provider)
            if state is not None:
                state.probing = False

    def snapshot(self, provider: str) -> dict:
        with self._lock:
            return self._snapshot(provider, self._state(provider), self._clock())

    def _snapshot(self, provider: str, state: _ProviderState, now: float) -> dict:
        phase = self._phase(state, now)
        outcomes = state.outcomes
        failure_rate = 0.0
        if outcomes:
            failure_rate = sum(1 for ok in outcomes if not ok) / len(outcomes)
        return {
            "provider": provider,
            "available": phase == STATE_CLOSED or (phase == STATE_HALF_OPEN and not state.probing),
            "state": phase,
            "avg_latency_ms": round(state.avg_latency_ms, 2) if state.avg_latency_ms is not None else None,
            "failure_rate": round(failure_rate, 4),
            "consecutive_failures": state.consecutive_failures,
            "cooldown_remaining_seconds": round(max(0.0, state.cooldown_until - now), 2)
            if phase == STATE_OPEN
            else 0.0,
            "attempts": state.total_attempts,
            "last_error": state.last_error,
        }

    def status(self) -> dict:
        with self._lock:
            now = self._clock()
            return {
                name: self._snapshot(name, state, now)
                for name, state in sorted(self._states.items())
            }

    def reset(self, provider: str) -> None:
        with self._lock:
            self._states[provider] = _ProviderState(self._config)
