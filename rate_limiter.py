"""
Fixed-window rate governor for outbound SCB API calls.

SCB publishes its quota (calls per time window) through the /config endpoint.
The governor mirrors that window locally so calls that would exceed the quota
are rejected before they reach the network.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

DEFAULT_MAX_CALLS = 30
DEFAULT_WINDOW_SECONDS = 10


@dataclass
class RateLimitState:
    """Counters for the current quota window."""

    max_calls_per_window: int = DEFAULT_MAX_CALLS
    window_duration_seconds: float = DEFAULT_WINDOW_SECONDS
    window_start_time: Optional[float] = None
    request_count: int = 0


@dataclass(frozen=True)
class Admission:
    allowed: bool
    remaining: int
    reset_in_seconds: int


class RateGovernor:
    """Admits or rejects calls against a fixed time window.

    The state object is owned by the caller, so independent governors (one per
    client, or one per test) never share counters.
    """

    def __init__(self, state: Optional[RateLimitState] = None, clock: Callable[[], float] = time.monotonic):
        self.state = state if state is not None else RateLimitState()
        self._clock = clock
        self._lock = threading.Lock()
        self.configured_from_api = False

    def configure(self, max_calls: int, window_seconds: float, from_api: bool = True) -> None:
        """Apply limits, typically the ones reported by the API."""
        if max_calls <= 0 or window_seconds <= 0:
            raise ValueError("Rate limit values must be positive")
        with self._lock:
            self.state.max_calls_per_window = int(max_calls)
            self.state.window_duration_seconds = float(window_seconds)
            self.configured_from_api = from_api

    def _roll_window(self, now: float) -> None:
        state = self.state
        if state.window_start_time is None or now - state.window_start_time >= state.window_duration_seconds:
            state.window_start_time = now
            state.request_count = 0

    def _reset_in(self, now: float) -> int:
        elapsed = now - self.state.window_start_time
        return max(0, int(round(self.state.window_duration_seconds - elapsed)))

    def admit(self) -> Admission:
        """Check and count one call as a single atomic step."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            state = self.state

            if state.request_count < state.max_calls_per_window:
                state.request_count += 1
                return Admission(
                    allowed=True,
                    remaining=state.max_calls_per_window - state.request_count,
                    reset_in_seconds=self._reset_in(now),
                )

            return Admission(allowed=False, remaining=0, reset_in_seconds=self._reset_in(now))

    def usage(self) -> Dict[str, Any]:
        """Snapshot of the current window for reporting."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            state = self.state
            window_start = datetime.now() - timedelta(seconds=now - state.window_start_time)
            return {
                "request_count": state.request_count,
                "max_calls_per_window": state.max_calls_per_window,
                "window_duration_seconds": state.window_duration_seconds,
                "remaining": max(0, state.max_calls_per_window - state.request_count),
                "reset_in_seconds": self._reset_in(now),
                "window_start": window_start.isoformat(timespec="seconds"),
                "limits_source": "api" if self.configured_from_api else "defaults",
            }
