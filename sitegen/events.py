"""Structured pipeline events and the sinks that receive them.

Stages, fallback chains and circuit breakers report what they do as small
typed records instead of free-form console output. A sink is injected into
each component; nothing here is global.

Examples
--------
>>> sink = MemoryEventSink()
>>> sink.emit(StageStarted(stage="spec"))
>>> [type(e).__name__ for e in sink.events]
['StageStarted']
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineEvent:
    """Base record; ``log_level`` is the level the record is logged at."""

    @property
    def log_level(self) -> int:
        return logging.INFO

    def fields(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StageStarted(PipelineEvent):
    stage: str


@dataclass(frozen=True)
class StageCompleted(PipelineEvent):
    stage: str
    level_used: int = 0
    backend_used: str = ""
    duration_ms: int = 0


@dataclass(frozen=True)
class LevelAttempted(PipelineEvent):
    chain: str
    level_index: int
    level_name: str
    backend_id: str

    @property
    def log_level(self) -> int:
        return logging.DEBUG


@dataclass(frozen=True)
class LevelFailed(PipelineEvent):
    chain: str
    level_index: int
    level_name: str
    error_code: str
    message: str

    @property
    def log_level(self) -> int:
        return logging.WARNING


@dataclass(frozen=True)
class LevelSucceeded(PipelineEvent):
    chain: str
    level_index: int
    level_name: str
    duration_ms: int


@dataclass(frozen=True)
class RetryScheduled(PipelineEvent):
    operation: str
    attempt: int
    delay: float
    error_code: str

    @property
    def log_level(self) -> int:
        return logging.WARNING


@dataclass(frozen=True)
class BreakerStateChanged(PipelineEvent):
    breaker: str
    old_state: str
    new_state: str


@dataclass(frozen=True)
class PipelineDegraded(PipelineEvent):
    reason: str
    stage: str = ""

    @property
    def log_level(self) -> int:
        return logging.WARNING


@dataclass(frozen=True)
class ImageFallback(PipelineEvent):
    section_id: str
    reason: str

    @property
    def log_level(self) -> int:
        return logging.WARNING


class EventSink(Protocol):
    def emit(self, event: PipelineEvent) -> None: ...


class NullEventSink:
    """Discard every event."""

    def emit(self, event: PipelineEvent) -> None:
        return None


class LoggingEventSink:
    """Report each event through a standard-library logger.

    The record's fields are attached as ``extra`` under the ``event`` key so
    structured log handlers can pick them up unchanged.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def emit(self, event: PipelineEvent) -> None:
        data = event.fields()
        summary = " ".join(f"{k}={v}" for k, v in data.items())
        self.log.log(
            event.log_level,
            "%s %s",
            type(event).__name__,
            summary,
            extra={"event": {"type": type(event).__name__, **data}},
        )


@dataclass
class MemoryEventSink:
    """Collect events in memory, mainly for tests and run summaries."""

    events: list[PipelineEvent] = field(default_factory=list)

    def emit(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def of_type(self, kind: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, kind)]


class FanoutEventSink:
    """Forward each event to several sinks in order."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: PipelineEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
