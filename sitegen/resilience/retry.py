"""Bounded retry with jittered exponential backoff.

The policy wraps one asynchronous operation. An error is retried only when
one of the configured patterns occurs in the error's class name, its
``code`` attribute or its message; everything else propagates after the
first attempt. After the last attempt the caller receives the last
underlying error unchanged.

The backoff for the retry following failed attempt ``n`` is::

    base = initial_delay * backoff_multiplier ** (n - 1)
    delay = min(base + uniform(0, 0.1 * base), max_delay)

Examples
--------
>>> config = RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0,
...                      backoff_multiplier=1.0,
...                      retryable_error_patterns=("ThrottlingException",))
>>> async def fetch():
...     return "ok"
>>> # asyncio.run(with_retry(fetch, config)) -> 'ok'
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

import tenacity
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from sitegen.config import RETRY_PRESETS

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.1

RetryHook = Callable[[int, BaseException, float], Any]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Immutable retry parameters (durations in seconds)."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_error_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )
        object.__setattr__(
            self, "retryable_error_patterns", tuple(self.retryable_error_patterns)
        )

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> RetryConfig:
        """Build a config from one of the named presets in ``RETRY_PRESETS``."""
        try:
            values: Mapping[str, Any] = RETRY_PRESETS[name]
        except KeyError:
            raise ValueError(f"Unknown retry preset {name!r}") from None
        return cls(**{**values, **overrides})


def is_retryable_error(error: BaseException, patterns: Iterable[str]) -> bool:
    """Return True when any pattern occurs in the error's name, code or message.

    Parameters
    ----------
    error : BaseException
        The error raised by the operation.
    patterns : Iterable[str]
        Substrings identifying retryable conditions.

    Returns
    -------
    bool
        Whether the error should be retried.

    Examples
    --------
    >>> is_retryable_error(TimeoutError("ThrottlingException: slow down"), ["Throttling"])
    True
    >>> is_retryable_error(ValueError("bad"), ["Throttling"])
    False
    """
    if not isinstance(error, Exception):
        return False
    code = getattr(error, "code", None)
    haystacks = [type(error).__name__, str(error)]
    if isinstance(code, str):
        haystacks.append(code)
    return any(p and p in h for p in patterns for h in haystacks)


def compute_delay(
    attempt: int, config: RetryConfig, rng: random.Random | None = None
) -> float:
    """Return the delay in seconds before the retry that follows ``attempt``."""
    base = config.initial_delay * config.backoff_multiplier ** max(attempt - 1, 0)
    jitter = (rng or random).uniform(0, JITTER_RATIO * base) if base > 0 else 0.0
    return min(base + jitter, config.max_delay)


class _JitteredBackoff(tenacity.wait.wait_base):
    """Tenacity wait strategy implementing :func:`compute_delay`."""

    def __init__(self, config: RetryConfig, rng: random.Random | None) -> None:
        self.config = config
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return compute_delay(retry_state.attempt_number, self.config, self.rng)


class RetryPolicy:
    """Run an operation under a :class:`RetryConfig`.

    Parameters
    ----------
    config : RetryConfig
        Attempts, delays and retryable error patterns.
    on_retry : callable, optional
        Called as ``on_retry(attempt, error, delay)`` before each sleep. May
        be a plain function or a coroutine function.
    sleep : callable, optional
        Awaitable sleep used between attempts; tests pass a recorder.
    rng : random.Random, optional
        Source of jitter.

    Notes
    -----
    The policy keeps no per-call state, so one instance may serve any number
    of concurrent calls.
    """

    def __init__(
        self,
        config: RetryConfig,
        on_retry: RetryHook | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.on_retry = on_retry
        self.sleep = sleep
        self.rng = rng

    def _should_retry(self, error: BaseException) -> bool:
        return is_retryable_error(error, self.config.retryable_error_patterns)

    async def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Attempt %d/%d failed (%s); retrying in %.2fs",
            retry_state.attempt_number,
            self.config.max_attempts,
            error,
            delay,
        )
        if self.on_retry is not None and error is not None:
            outcome = self.on_retry(retry_state.attempt_number, error, delay)
            if inspect.isawaitable(outcome):
                await outcome

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await ``operation`` until it succeeds or retries are exhausted.

        ``operation`` may be a coroutine function or any callable returning
        an awaitable, such as ``lambda: store.put(...)``.

        Raises
        ------
        Exception
            The last error raised by ``operation``.
        """

        async def attempt() -> T:
            return await operation()

        retrying = AsyncRetrying(
            sleep=self.sleep,
            stop=stop_after_attempt(self.config.max_attempts),
            wait=_JitteredBackoff(self.config, self.rng),
            retry=retry_if_exception(self._should_retry),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        return await retrying(attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    on_retry: RetryHook | None = None,
) -> T:
    """Convenience wrapper around :meth:`RetryPolicy.call`."""
    return await RetryPolicy(config, on_retry=on_retry).call(operation)
