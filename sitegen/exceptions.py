"""Central application exception hierarchy.

This module defines the base application exception ``AppError`` and the
specialized subclasses used throughout the generation pipeline. The taxonomy
drives the resilience layer: ``transient`` errors are candidates for
retries, validation errors make the fallback chain move on to the next level,
``CircuitOpenError`` short-circuits a dependency, and the two terminal kinds
(``TerminalPipelineError`` and ``PublishError``) always reach the caller.
"""

from __future__ import annotations

from typing import Any, Mapping


class AppError(Exception):
    """Base exception for all application-level errors.

    Parameters
    ----------
    code : str
        Machine-readable error code (e.g., ``'DATA_VALIDATION_ERROR'``).
        Retry classification matches patterns against this value.
    message : str
        Human-readable message describing the error.
    context : Mapping[str, Any] | None, optional
        Optional structured context for logging.
    transient : bool, optional
        Whether the error is temporary and may be retried.

    Attributes
    ----------
    code : str
        Stable machine-readable error code.
    message : str
        Human-readable message.
    context : dict
        Structured, non-sensitive context for logging.
    transient : bool
        True if the error is transient.

    Examples
    --------
    >>> e = AppError('CODE', 'message', context={'k': 'v'}, transient=True)
    >>> e.code
    'CODE'
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})
        self.transient = bool(transient)

    def __str__(self) -> str:
        """Return a compact string representation of the error."""
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Return a log-safe dictionary representation of the error."""
        return {
            "error_code": self.code,
            "error_type": type(self).__name__,
            "message": self.message,
            "context": self.context,
            "is_transient": self.transient,
        }


class ConfigurationError(AppError):
    """Raised for invalid or missing configuration."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "CONFIGURATION_ERROR", message, context=context, transient=False
        )


class DataValidationError(AppError):
    """Raised for data that fails schema or content validation."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "DATA_VALIDATION_ERROR", message, context=context, transient=False
        )


class ResponseValidationError(DataValidationError):
    """Raised when a model response is malformed or cannot be parsed.

    Never retried: the same backend will most likely produce the same kind
    of output again, so the fallback chain moves straight to the next level.
    """


class TransientBackendError(AppError):
    """Raised for timeouts, throttling and 5xx responses from a backend.

    The ``code`` carries the backend's own error name (for example
    ``ThrottlingException``) so retry patterns can match on it.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "TRANSIENT_BACKEND_ERROR",
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, context=context, transient=True)


class BackendTimeoutError(TransientBackendError):
    """Raised when a remote call loses its race against the hard timeout."""

    def __init__(
        self,
        message: str,
        *,
        timeout: float | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if timeout is not None:
            ctx.setdefault("timeout", timeout)
        super().__init__(message, code="BACKEND_TIMEOUT", context=ctx)
        self.timeout = timeout


class BackendRequestError(AppError):
    """Raised when a backend rejects a request (non-retryable 4xx)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "BACKEND_REQUEST_ERROR",
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(code, message, context=context, transient=False)


class CircuitOpenError(AppError):
    """Raised when a circuit breaker refuses a call without invoking it.

    Attributes
    ----------
    breaker_name : str
        Name of the dependency whose breaker is open.
    retry_after : float | None
        Seconds until the breaker allows a trial call, when known.
    """

    def __init__(
        self,
        breaker_name: str,
        *,
        retry_after: float | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            "CIRCUIT_OPEN",
            message or f"Circuit breaker {breaker_name} is OPEN",
            context={"breaker": breaker_name, "retry_after": retry_after},
            transient=False,
        )
        self.breaker_name = breaker_name
        self.retry_after = retry_after


class StageError(AppError):
    """Raised when a stage output fails the checks of the next stage."""

    def __init__(
        self, stage: str, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        ctx = {"stage": stage, **dict(context or {})}
        super().__init__("STAGE_ERROR", message, context=ctx, transient=False)
        self.stage = stage


class TerminalPipelineError(AppError):
    """Raised when a guaranteed-success terminal fallback level fails.

    This is a defect in the local generation code, not an environment
    condition, and must never be absorbed by a fallback path.
    """

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "TERMINAL_PIPELINE_ERROR", message, context=context, transient=False
        )


class PublishError(AppError):
    """Raised when the generated website cannot be made live."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = True,
    ) -> None:
        super().__init__(
            "PUBLISH_ERROR", message, context=context, transient=transient
        )
