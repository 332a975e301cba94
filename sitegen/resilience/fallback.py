"""Ordered fallback across generation backends.

A :class:`FallbackChain` holds levels ordered from most to least preferred.
Every level except the last is an online backend and each of its attempts
is wrapped as ``retry(breaker(timeout(call)))``: the hard timeout races the
backend call, the level's circuit breaker records the outcome, and the
retry policy re-runs the guarded call for retryable errors. Whatever
escapes that stack is logged and the chain moves to the next level.

The last level is terminal: it costs nothing, makes no network call and
is expected to always succeed. It runs synchronously without timeout,
retry or breaker. If it raises anyway, the chain raises
:class:`TerminalPipelineError`; that is a defect and is never absorbed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from sitegen.config import DEFAULT_BEDROCK_REGION, LOCAL_REGION
from sitegen.events import (
    EventSink,
    LevelAttempted,
    LevelFailed,
    LevelSucceeded,
    NullEventSink,
    RetryScheduled,
)
from sitegen.exceptions import (
    AppError,
    BackendTimeoutError,
    ConfigurationError,
    TerminalPipelineError,
)
from sitegen.models import FallbackLevel, GenerationResult, LevelMetadata
from sitegen.resilience.breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from sitegen.resilience.retry import RetryConfig, RetryPolicy, SleepFn

logger = logging.getLogger(__name__)

P = TypeVar("P")
T = TypeVar("T")

OnlineCall = Callable[[FallbackLevel, P], Awaitable[GenerationResult[T]]]
TerminalCall = Callable[[FallbackLevel, P], GenerationResult[T]]


class FallbackChain(Generic[P, T]):
    """Try levels in declared order and return the first success.

    Parameters
    ----------
    name : str
        Chain name used in logs and events (``spec``, ``code``, ``image``).
    levels : Sequence[FallbackLevel]
        Ordered levels. The last one must cost ``0``; it is the terminal,
        network-free level.
    call : callable
        ``await call(level, payload)`` performs one online attempt and
        returns a ``GenerationResult``.
    terminal : callable
        ``terminal(level, payload)`` builds the guaranteed result.
    retry_config : RetryConfig, optional
        Per-level retry policy; defaults to the ``bedrock`` preset.
    breakers : CircuitBreakerRegistry, optional
        Shared registry; breakers are keyed by ``level.backend_id``.
    breaker_config : CircuitBreakerConfig, optional
        Config for breakers this chain creates.
    events : EventSink, optional
        Receives level and retry records.
    region : str, optional
        Region reported for online levels.
    clock : callable, optional
        Monotonic clock in seconds.
    sleep : callable, optional
        Awaitable sleep used between retries.

    Raises
    ------
    ConfigurationError
        If ``levels`` is empty or the last level has a non-zero cost.
    """

    def __init__(
        self,
        name: str,
        levels: Sequence[FallbackLevel],
        call: OnlineCall,
        terminal: TerminalCall,
        *,
        retry_config: RetryConfig | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        events: EventSink | None = None,
        region: str = DEFAULT_BEDROCK_REGION,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if not levels:
            raise ConfigurationError(f"Fallback chain {name!r} has no levels")
        if levels[-1].cost != 0:
            raise ConfigurationError(
                f"Last level of fallback chain {name!r} must cost 0",
                context={"level": levels[-1].name, "cost": levels[-1].cost},
            )
        self.name = name
        self.levels = tuple(levels)
        self.call = call
        self.terminal = terminal
        self.retry_config = retry_config or RetryConfig.preset("bedrock")
        self.events = events or NullEventSink()
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock, events=self.events)
        self.breaker_config = breaker_config
        self.region = region
        self.clock = clock
        self.sleep = sleep

    async def run(self, payload: P) -> GenerationResult[T]:
        """Run the chain for one payload.

        Returns
        -------
        GenerationResult
            The first successful level's result, with ``backend_used`` set
            to the level name and ``metadata`` describing the level.

        Raises
        ------
        TerminalPipelineError
            If the terminal level fails.
        """
        start = self.clock()
        online = self.levels[:-1]
        for index, level in enumerate(online, start=1):
            self.events.emit(
                LevelAttempted(
                    chain=self.name,
                    level_index=index,
                    level_name=level.name,
                    backend_id=level.backend_id,
                )
            )
            try:
                result = await self._attempt(level, payload)
            except Exception as exc:
                code = exc.code if isinstance(exc, AppError) else type(exc).__name__
                logger.warning(
                    "[%s] level %d (%s) failed: %s", self.name, index, level.name, exc
                )
                self.events.emit(
                    LevelFailed(
                        chain=self.name,
                        level_index=index,
                        level_name=level.name,
                        error_code=code,
                        message=str(exc),
                    )
                )
                continue
            return self._annotate(result, index, level, start, self.region)

        index = len(self.levels)
        level = self.levels[-1]
        try:
            result = self.terminal(level, payload)
        except Exception as exc:
            logger.error("[%s] terminal level %s failed: %s", self.name, level.name, exc)
            raise TerminalPipelineError(
                f"Terminal level {level.name} of chain {self.name} failed: {exc}",
                context={"chain": self.name, "level": level.name},
            ) from exc
        return self._annotate(result, index, level, start, LOCAL_REGION)

    async def _attempt(self, level: FallbackLevel, payload: P) -> GenerationResult[T]:
        breaker = self.breakers.get_or_create(level.backend_id, self.breaker_config)

        async def timed() -> GenerationResult[T]:
            try:
                return await asyncio.wait_for(self.call(level, payload), level.timeout)
            except asyncio.TimeoutError:
                raise BackendTimeoutError(
                    f"{level.name} did not answer within {level.timeout}s",
                    timeout=level.timeout,
                    context={"backend_id": level.backend_id},
                ) from None

        async def guarded() -> GenerationResult[T]:
            return await breaker.call(timed)

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            code = error.code if isinstance(error, AppError) else type(error).__name__
            self.events.emit(
                RetryScheduled(
                    operation=f"{self.name}:{level.name}",
                    attempt=attempt,
                    delay=delay,
                    error_code=code,
                )
            )

        policy = RetryPolicy(self.retry_config, on_retry=on_retry, sleep=self.sleep)
        return await policy.call(guarded)

    def _annotate(
        self,
        result: Any,
        index: int,
        level: FallbackLevel,
        start: float,
        region: str,
    ) -> GenerationResult[T]:
        if not isinstance(result, GenerationResult):
            result = GenerationResult(content=result)
        elapsed_ms = int(max(self.clock() - start, 0.0) * 1000)
        self.events.emit(
            LevelSucceeded(
                chain=self.name,
                level_index=index,
                level_name=level.name,
                duration_ms=elapsed_ms,
            )
        )
        logger.info(
            "[%s] succeeded at level %d (%s) in %d ms",
            self.name,
            index,
            level.name,
            elapsed_ms,
        )
        return dataclasses.replace(
            result,
            backend_used=level.name,
            metadata=LevelMetadata(
                level_used=index,
                level_name=level.name,
                backend_id=level.backend_id,
                cost=level.cost,
                generation_time_ms=elapsed_ms,
                region=region,
            ),
        )
