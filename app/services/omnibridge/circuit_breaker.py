"""Circuit breakers for outbound provider calls, one per channel type."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock


class CircuitOpenError(RuntimeError):
    pass


@dataclass
class CircuitState:
    failure_count: int = 0
    last_failure_time: datetime | None = None
    opened_at: datetime | None = None
    state: str = "closed"  # closed, open, half-open


class CircuitBreaker:
    def __init__(self, name: str = "default", failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState()
        self._lock = Lock()

    @property
    def state(self) -> str:
        return self._state.state

    def _now(self) -> datetime:
        return datetime.now(UTC)

    def _can_retry(self) -> bool:
        reference_time = self._state.opened_at or self._state.last_failure_time
        if not reference_time:
            return True
        return self._now() - reference_time >= timedelta(seconds=self.recovery_timeout)

    def _on_success(self) -> None:
        self._state = CircuitState()

    def _on_failure(self) -> None:
        self._state.failure_count += 1
        self._state.last_failure_time = self._now()
        if self._state.state == "half-open" or self._state.failure_count >= self.failure_threshold:
            self._state.state = "open"
            self._state.opened_at = self._now()

    def call(self, func, *args, counts_as_failure=None, **kwargs):
        """Run ``func`` through the breaker.

        ``counts_as_failure`` decides whether a raised exception trips the
        breaker; by default every exception does.
        """
        with self._lock:
            if self._state.state == "open":
                if self._can_retry():
                    self._state.state = "half-open"
                else:
                    raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if counts_as_failure is None or counts_as_failure(exc):
                with self._lock:
                    self._on_failure()
            raise

        with self._lock:
            self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState()


_breakers: dict[str, CircuitBreaker] = {}
_breakers_lock = Lock()


def get_breaker(name: str) -> CircuitBreaker:
    with _breakers_lock:
        breaker = _breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name=name)
            _breakers[name] = breaker
        return breaker


def reset_breakers() -> None:
    with _breakers_lock:
        _breakers.clear()
