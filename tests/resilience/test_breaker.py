"""Tests for circuit breaker state transitions and the breaker registry."""

from __future__ import annotations

import asyncio

import pytest

from sitegen.events import BreakerStateChanged, MemoryEventSink
from sitegen.exceptions import (
    CircuitOpenError,
    ResponseValidationError,
    TransientBackendError,
)
from sitegen.resilience.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    is_failure_for_breaker,
)

CONFIG = CircuitBreakerConfig(
    failure_threshold=3, success_threshold=2, timeout=10.0, monitoring_period=60.0
)


async def ok():
    return "ok"


async def transient_failure():
    raise TransientBackendError("unavailable", code="ServiceUnavailable")


async def trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(TransientBackendError):
            await breaker.call(transient_failure)


@pytest.mark.asyncio
async def test_opens_after_threshold_and_rejects_without_invoking(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await trip(breaker, 3)
    assert breaker.get_state().state is CircuitState.OPEN

    invoked = []

    async def op():
        invoked.append(True)
        return "ok"

    clock.advance(9.9)
    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.call(op)
    assert invoked == []
    assert excinfo.value.breaker_name == "bedrock"
    assert excinfo.value.retry_after == pytest.approx(0.1)
    assert breaker.get_metrics()["rejected_calls"] == 1


@pytest.mark.asyncio
async def test_half_open_after_timeout_then_closes(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await trip(breaker, 3)
    clock.advance(10.0)

    seen_states = []

    async def op():
        seen_states.append(breaker.get_state().state)
        return "ok"

    assert await breaker.call(op) == "ok"
    assert seen_states == [CircuitState.HALF_OPEN]
    assert breaker.get_state().state is CircuitState.HALF_OPEN
    assert breaker.get_state().success_count == 1

    await breaker.call(op)
    assert breaker.get_state().state is CircuitState.CLOSED
    assert breaker.get_state().failure_count == 0


@pytest.mark.asyncio
async def test_failure_in_half_open_reopens(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await trip(breaker, 3)
    clock.advance(10.0)
    await trip(breaker, 1)
    state = breaker.get_state()
    assert state.state is CircuitState.OPEN
    assert state.next_attempt_at == pytest.approx(clock() + CONFIG.timeout)


@pytest.mark.asyncio
async def test_non_transient_app_errors_are_neutral(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)

    async def malformed():
        raise ResponseValidationError("not json")

    for _ in range(5):
        with pytest.raises(ResponseValidationError):
            await breaker.call(malformed)
    state = breaker.get_state()
    assert state.state is CircuitState.CLOSED
    assert state.failure_count == 0


@pytest.mark.asyncio
async def test_unexpected_exceptions_count_as_failures(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)

    async def boom():
        raise RuntimeError("socket closed")

    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(boom)
    assert breaker.get_state().state is CircuitState.OPEN


@pytest.mark.asyncio
async def test_success_resets_failure_count_when_closed(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await trip(breaker, 2)
    await breaker.call(ok)
    await trip(breaker, 2)
    assert breaker.get_state().state is CircuitState.CLOSED
    assert breaker.get_state().failure_count == 2


@pytest.mark.asyncio
async def test_failures_outside_monitoring_period_do_not_accumulate(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await trip(breaker, 2)
    clock.advance(61.0)
    await trip(breaker, 1)
    assert breaker.get_state().state is CircuitState.CLOSED
    assert breaker.get_state().failure_count == 1


@pytest.mark.asyncio
async def test_half_open_limits_concurrent_trial_calls(clock):
    config = CircuitBreakerConfig(
        failure_threshold=1, success_threshold=1, timeout=5.0, half_open_max_calls=1
    )
    breaker = CircuitBreaker("bedrock", config, clock=clock)
    await trip(breaker, 1)
    clock.advance(5.0)

    release = asyncio.Event()
    started = asyncio.Event()

    async def slow():
        started.set()
        await release.wait()
        return "trial"

    trial = asyncio.create_task(breaker.call(slow))
    await started.wait()
    with pytest.raises(CircuitOpenError):
        await breaker.call(ok)
    release.set()
    assert await trial == "trial"
    assert breaker.get_state().state is CircuitState.CLOSED


class Gate:
    """Operation that blocks until released, then returns its label."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self) -> str:
        self.started.set()
        await self.release.wait()
        return self.label


@pytest.mark.asyncio
async def test_trial_from_earlier_half_open_window_is_ignored(clock):
    config = CircuitBreakerConfig(
        failure_threshold=1, success_threshold=2, timeout=5.0, half_open_max_calls=2
    )
    breaker = CircuitBreaker("bedrock", config, clock=clock)
    await trip(breaker, 1)
    clock.advance(5.0)

    stale = Gate("stale")
    stale_task = asyncio.create_task(breaker.call(stale))
    await stale.started.wait()
    await trip(breaker, 1)
    assert breaker.get_state().state is CircuitState.OPEN

    clock.advance(5.0)
    fresh = Gate("fresh")
    fresh_task = asyncio.create_task(breaker.call(fresh))
    await fresh.started.wait()

    stale.release.set()
    assert await stale_task == "stale"
    state = breaker.get_state()
    assert state.state is CircuitState.HALF_OPEN
    assert state.success_count == 0

    # One fresh slot is still taken, so exactly one more trial fits.
    second = Gate("second")
    second_task = asyncio.create_task(breaker.call(second))
    await second.started.wait()
    with pytest.raises(CircuitOpenError):
        await breaker.call(ok)

    fresh.release.set()
    assert await fresh_task == "fresh"
    assert breaker.get_state().state is CircuitState.HALF_OPEN
    second.release.set()
    assert await second_task == "second"
    assert breaker.get_state().state is CircuitState.CLOSED
    assert breaker.get_metrics()["total_successes"] == 3


@pytest.mark.asyncio
async def test_transitions_are_emitted_as_events(clock):
    sink = MemoryEventSink()
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock, events=sink)
    await trip(breaker, 3)
    clock.advance(10.0)
    await breaker.call(ok)
    await breaker.call(ok)

    transitions = [(e.old_state, e.new_state) for e in sink.of_type(BreakerStateChanged)]
    assert transitions == [
        ("CLOSED", "OPEN"),
        ("OPEN", "HALF_OPEN"),
        ("HALF_OPEN", "CLOSED"),
    ]


@pytest.mark.asyncio
async def test_reset_and_forced_open(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await breaker.open()
    assert breaker.get_state().state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(ok)
    await breaker.reset()
    assert breaker.get_state().state is CircuitState.CLOSED
    assert await breaker.call(ok) == "ok"


@pytest.mark.asyncio
async def test_metrics_count_calls(clock):
    breaker = CircuitBreaker("bedrock", CONFIG, clock=clock)
    await breaker.call(ok)
    await trip(breaker, 1)
    metrics = breaker.get_metrics()
    assert metrics["name"] == "bedrock"
    assert metrics["state"] == "CLOSED"
    assert metrics["total_calls"] == 2
    assert metrics["total_successes"] == 1
    assert metrics["total_failures"] == 1


def test_is_failure_for_breaker_classification():
    assert is_failure_for_breaker(TransientBackendError("x"))
    assert is_failure_for_breaker(ValueError("x"))
    assert not is_failure_for_breaker(ResponseValidationError("x"))
    assert not is_failure_for_breaker(asyncio.CancelledError())


def test_config_defaults_and_validation():
    config = CircuitBreakerConfig(success_threshold=3)
    assert config.half_open_max_calls == 3
    with pytest.raises(ValueError):
        CircuitBreakerConfig(failure_threshold=0)
    with pytest.raises(ValueError):
        CircuitBreakerConfig(half_open_max_calls=0)
    preset = CircuitBreakerConfig.preset("ai_service")
    assert (preset.failure_threshold, preset.timeout) == (3, 120.0)
    with pytest.raises(ValueError):
        CircuitBreakerConfig.preset("nope")


@pytest.mark.asyncio
async def test_registry_shares_breakers_by_name(clock):
    registry = CircuitBreakerRegistry(clock=clock)
    first = registry.get_or_create("model-a")
    assert registry.get_or_create("model-a") is first
    assert registry.get("model-b") is None
    assert first.config == CircuitBreakerConfig.preset("ai_service")

    custom = registry.get_or_create("model-b", CONFIG)
    assert custom.config is CONFIG
    assert set(registry.all_metrics()) == {"model-a", "model-b"}

    await custom.open()
    await registry.reset_all()
    assert custom.get_state().state is CircuitState.CLOSED
