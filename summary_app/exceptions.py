from __future__ import annotations

from typing import Any


class SummaryError(RuntimeError):
    """Base exception for business-level summary pipeline errors."""

    phase = "pipeline"

    def details(self) -> dict[str, Any]:
        return {"phase": self.phase}


class InputError(SummaryError):
    """Raised when the report set is rejected before any completion call."""

    phase = "input"

    def __init__(self, message: str, *, report_count: int = 0, min_reports: int = 0) -> None:
        super().__init__(message)
        self.report_count = report_count
        self.min_reports = min_reports

    def details(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "report_count": self.report_count,
            "min_reports": self.min_reports,
        }


class ExtractionError(SummaryError):
    """Raised when too many extraction batches failed."""

    phase = "extraction"

    def __init__(
        self,
        message: str,
        *,
        batch_count: int,
        succeeded_batches: int,
        failures: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.batch_count = batch_count
        self.succeeded_batches = succeeded_batches
        self.failures = failures or []

    @property
    def failed_batches(self) -> int:
        return len(self.failures)

    def details(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "batch_count": self.batch_count,
            "succeeded_batches": self.succeeded_batches,
            "failed_batches": self.failed_batches,
            "failures": self.failures,
        }


class SynthesisError(SummaryError):
    """Raised when the narrative could not be generated within the retry budget."""

    phase = "synthesis"

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.batch_count: int | None = None
        self.succeeded_batches: int | None = None
        self.failed_batches: int | None = None

    def with_batches(self, *, batch_count: int, succeeded_batches: int, failed_batches: int) -> SynthesisError:
        self.batch_count = batch_count
        self.succeeded_batches = succeeded_batches
        self.failed_batches = failed_batches
        return self

    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"phase": self.phase, "attempts": self.attempts}
        if self.batch_count is not None:
            details["batch_count"] = self.batch_count
            details["succeeded_batches"] = self.succeeded_batches
            details["failed_batches"] = self.failed_batches
        return details


class AggregationError(SummaryError):
    """Raised internally when an aggregation invariant does not hold."""

    phase = "aggregation"


class CompletionError(SummaryError):
    """Base exception for text-completion provider failures."""

    phase = "completion"
    retryable = False


class ConfigurationError(CompletionError):
    """Raised when the completion client is missing required configuration."""


class CompletionTimeoutError(CompletionError):
    """Raised when a completion call exceeds its timeout."""

    retryable = True


class CompletionUnavailableError(CompletionError):
    """Raised on provider throttling or 5xx responses."""

    retryable = True

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class CompletionRequestError(CompletionError):
    """Raised on non-retryable 4xx responses."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(CompletionError):
    """Raised when a completion response cannot be parsed into the expected shape."""


class EmptyCompletionError(MalformedResponseError):
    """Raised when a completion returns only whitespace; worth another attempt."""

    retryable = True


class DeadlineExceededError(CompletionError):
    """Raised instead of starting a completion attempt after the run deadline."""
