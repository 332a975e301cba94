"""Circuit breakers guarding calls to unreliable dependencies.

A breaker starts CLOSED and counts failures. Once ``failure_threshold``
failures pile up within ``monitoring_period`` seconds of each other it
OPENs and rejects calls with :class:`CircuitOpenError` without running
them. After ``timeout`` seconds the next call moves it to HALF_OPEN, where
at most ``half_open_max_calls`` trial calls run at once; ``success_threshold``
successes close it again and any failure re-opens it.

Only errors that say something about the health of the dependency count as
failures: transient ``AppError``s and unexpected exceptions. A non-transient
``AppError`` (for example a malformed model response) shows the dependency
answered and is neutral.

State lives behind one ``asyncio.Lock`` per breaker; the wrapped operation
itself always runs outside the lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from sitegen.config import BREAKER_PRESETS
from sitegen.events import BreakerStateChanged, EventSink, NullEventSink
from sitegen.exceptions import AppError, CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Breaker thresholds; ``timeout`` and ``monitoring_period`` are seconds."""

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0
    monitoring_period: float = 120.0
    half_open_max_calls: int | None = None

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.timeout < 0 or self.monitoring_period < 0:
            raise ValueError("timeout and monitoring_period must be non-negative")
        if self.half_open_max_calls is None:
            object.__setattr__(self, "half_open_max_calls", self.success_threshold)
        elif self.half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be >= 1")

    @classmethod
    def preset(cls, name: str) -> CircuitBreakerConfig:
        try:
            values = BREAKER_PRESETS[name]
        except KeyError:
            raise ValueError(f"Unknown breaker preset {name!r}") from None
        return cls(
            failure_threshold=int(values["failure_threshold"]),
            success_threshold=int(values["success_threshold"]),
            timeout=float(values["timeout"]),
            monitoring_period=float(values["monitoring_period"]),
        )


@dataclass(frozen=True)
class CircuitBreakerState:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: float | None
    next_attempt_at: float | None


def is_failure_for_breaker(exc: BaseException) -> bool:
    """Return True if ``exc`` should count against the dependency's health.

    Examples
    --------
    >>> from sitegen.exceptions import ResponseValidationError, TransientBackendError
    >>> is_failure_for_breaker(TransientBackendError("slow", code="ThrottlingException"))
    True
    >>> is_failure_for_breaker(ResponseValidationError("not json"))
    False
    """
    if isinstance(exc, AppError):
        return exc.transient
    return isinstance(exc, Exception)


class CircuitBreaker:
    """Three-state circuit breaker for asynchronous operations.

    Parameters
    ----------
    name : str
        Dependency name, used in errors, logs and events.
    config : CircuitBreakerConfig
        Thresholds and timings.
    clock : callable, optional
        Monotonic clock returning seconds; tests inject a manual clock.
    events : EventSink, optional
        Receives a ``BreakerStateChanged`` record on every transition.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
        events: EventSink | None = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.clock = clock
        self.events = events or NullEventSink()
        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at: float | None = None
        self._next_attempt_at: float | None = None
        self._half_open_in_flight = 0
        self._generation = 0
        self._total_calls = 0
        self._total_successes = 0
        self._total_failures = 0
        self._rejected_calls = 0

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` if the breaker admits it.

        Raises
        ------
        CircuitOpenError
            If the breaker is OPEN, or HALF_OPEN with all trial slots taken.
        Exception
            Whatever ``operation`` raises, after it has been recorded.
        """
        generation, trial = await self._admit()
        try:
            result = await operation()
        except BaseException as exc:
            async with self._lock:
                self._settle(generation, trial, exc)
            raise
        async with self._lock:
            self._settle(generation, trial, None)
        return result

    async def _admit(self) -> tuple[int, bool]:
        async with self._lock:
            now = self.clock()
            if self._state is CircuitState.OPEN:
                if self._next_attempt_at is not None and now >= self._next_attempt_at:
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    self._rejected_calls += 1
                    retry_after = (
                        max(self._next_attempt_at - now, 0.0)
                        if self._next_attempt_at is not None
                        else None
                    )
                    raise CircuitOpenError(self.name, retry_after=retry_after)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= (self.config.half_open_max_calls or 1):
                    self._rejected_calls += 1
                    raise CircuitOpenError(
                        self.name,
                        message=f"Circuit breaker {self.name} is HALF_OPEN and saturated",
                    )
                self._half_open_in_flight += 1
                self._total_calls += 1
                return self._generation, True
            self._total_calls += 1
            return self._generation, False

    def _settle(self, generation: int, trial: bool, error: BaseException | None) -> None:
        failed = error is not None and is_failure_for_breaker(error)
        if error is None:
            self._total_successes += 1
        elif failed:
            self._total_failures += 1
        if generation != self._generation:
            # Admitted before the last transition; the outcome says nothing
            # about the current state.
            return
        if trial:
            self._half_open_in_flight -= 1
        if error is None:
            self._record_success()
        elif failed:
            self._record_failure()

    def _record_success(self) -> None:
        if self._state is CircuitState.CLOSED:
            self._failure_count = 0
        elif self._state is CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        now = self.clock()
        if self._state is CircuitState.HALF_OPEN:
            self._last_failure_at = now
            self._transition(CircuitState.OPEN)
            return
        if self._state is CircuitState.CLOSED:
            if (
                self._last_failure_at is not None
                and now - self._last_failure_at > self.config.monitoring_period
            ):
                self._failure_count = 0
            self._failure_count += 1
            self._last_failure_at = now
            if self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)
            return
        self._last_failure_at = now

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        self._generation += 1
        if new_state is CircuitState.OPEN:
            self._success_count = 0
            self._next_attempt_at = self.clock() + self.config.timeout
        elif new_state is CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_in_flight = 0
        else:
            self._failure_count = 0
            self._success_count = 0
            self._next_attempt_at = None
        logger.info(
            "Circuit breaker %s: %s -> %s", self.name, old_state.value, new_state.value
        )
        self.events.emit(
            BreakerStateChanged(
                breaker=self.name, old_state=old_state.value, new_state=new_state.value
            )
        )

    def get_state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_at=self._last_failure_at,
            next_attempt_at=self._next_attempt_at,
        )

    def get_metrics(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "total_calls": self._total_calls,
            "total_successes": self._total_successes,
            "total_failures": self._total_failures,
            "rejected_calls": self._rejected_calls,
            "last_failure_at": self._last_failure_at,
            "next_attempt_at": self._next_attempt_at,
        }

    async def reset(self) -> None:
        """Force the breaker CLOSED and clear its counters."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_at = None
            self._half_open_in_flight = 0

    async def open(self) -> None:
        """Force the breaker OPEN for one ``timeout`` period."""
        async with self._lock:
            if self._state is CircuitState.OPEN:
                self._next_attempt_at = self.clock() + self.config.timeout
            else:
                self._transition(CircuitState.OPEN)


class CircuitBreakerRegistry:
    """Named breakers shared by every caller of the same dependency.

    Parameters
    ----------
    default_config : CircuitBreakerConfig, optional
        Config used when ``get_or_create`` is called without one.
    clock : callable, optional
        Clock handed to every breaker created here.
    events : EventSink, optional
        Sink handed to every breaker created here.
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
        events: EventSink | None = None,
    ) -> None:
        self.default_config = default_config or CircuitBreakerConfig.preset("ai_service")
        self.clock = clock
        self.events = events
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_or_create(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                config or self.default_config,
                clock=self.clock,
                events=self.events,
            )
            self._breakers[name] = breaker
        return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def all(self) -> dict[str, CircuitBreaker]:
        return dict(self._breakers)

    def all_metrics(self) -> dict[str, dict[str, Any]]:
        return {name: b.get_metrics() for name, b in self._breakers.items()}

    async def reset_all(self) -> None:
        for breaker in list(self._breakers.values()):
            await breaker.reset()
