"""Exceptions for the facility intake pipeline.

Pipeline stages report expected failures through ``Result`` values; the
classes below are raised at API boundaries and for run-fatal conditions.
"""

from __future__ import annotations

from enum import Enum


class FailureClass(str, Enum):
    """Classification of a provider call failure."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    MALFORMED_REQUEST = "malformed_request"
    UNAVAILABLE = "unavailable"

    @property
    def retryable(self) -> bool:
        """Whether a failure of this class is worth another attempt."""
        return self in (
            FailureClass.TIMEOUT,
            FailureClass.RATE_LIMITED,
            FailureClass.SERVER_ERROR,
        )


class FacilityIntakeError(Exception):
    """Base exception for facility intake errors"""  # noqa: D415


class ConfigurationError(FacilityIntakeError):
    """Raised when configuration is missing or inconsistent"""  # noqa: D415


class RoutingError(FacilityIntakeError):
    """Raised when no routing rule exists for a task type"""  # noqa: D415


class ProviderError(FacilityIntakeError):
    """A single provider call failed."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        failure_class: FailureClass = FailureClass.SERVER_ERROR,
        status_code: int | None = None,
    ) -> None:
        """Initialize with the provider name and classified failure.

        Args:
            provider: Stable provider identifier, e.g. ``"anthropic"``.
            message: Human-readable failure reason.
            failure_class: Classification driving retry decisions.
            status_code: HTTP-equivalent status when the provider supplied one.
        """
        self.provider = provider
        self.message = message
        self.failure_class = failure_class
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")

    @property
    def retryable(self) -> bool:
        return self.failure_class.retryable

    @classmethod
    def from_status(
        cls, provider: str, status_code: int | None, message: str
    ) -> ProviderError:
        """Build an error from an HTTP-equivalent status code."""
        return cls(
            provider,
            message,
            failure_class=classify_status(status_code),
            status_code=status_code,
        )


class AllProvidersFailedError(FacilityIntakeError):
    """Every provider in a task's fallback chain failed."""

    def __init__(self, task_type: str, errors: list[ProviderError]) -> None:
        self.task_type = task_type
        self.errors = list(errors)
        if self.errors:
            detail = "; ".join(f"{e.provider}: {e.message}" for e in self.errors)
        else:
            detail = "no providers available"
        super().__init__(f"All providers failed for {task_type}: {detail}")

    @property
    def attempted(self) -> tuple[str, ...]:
        return tuple(e.provider for e in self.errors)


class RunFailedError(FacilityIntakeError):
    """Raised when a pipeline run cannot continue at all"""  # noqa: D415


class RunNotFoundError(FacilityIntakeError):
    """Raised when a run identifier is unknown"""  # noqa: D415


class ClarificationNotFoundError(FacilityIntakeError):
    """Raised when a clarification identifier is unknown"""  # noqa: D415


class InvalidTransitionError(FacilityIntakeError):
    """Raised when a state transition is not allowed"""  # noqa: D415


def classify_status(status_code: int | None) -> FailureClass:
    """Map an HTTP-equivalent status code onto a failure class."""
    if status_code is None:
        return FailureClass.SERVER_ERROR
    if status_code == 429:
        return FailureClass.RATE_LIMITED
    if status_code in (408, 504):
        return FailureClass.TIMEOUT
    if status_code >= 500:
        return FailureClass.SERVER_ERROR
    if status_code in (401, 403):
        return FailureClass.UNAVAILABLE
    return FailureClass.MALFORMED_REQUEST
