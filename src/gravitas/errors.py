"""Error taxonomy for the memory pipeline.

Input problems and dependency failures are raised; integrity anomalies
(regressions, schema drift) are recorded as flags and never raised.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures surfaced to pipeline callers."""

    kind = "internal"
    fallback_content: str | None = None


class InputValidationError(PipelineError):
    """Raised when a request is missing required fields."""

    kind = "input_validation"


class DependencyError(PipelineError):
    """Raised when an external collaborator cannot serve a critical call."""

    kind = "dependency_failure"


class StoreError(DependencyError):
    """Raised by store gateways when a read or write fails."""


class EmbeddingError(DependencyError):
    """Raised by embedding adapters when a call fails."""


class LLMError(DependencyError):
    """Raised by LLM adapters when a call fails.

    ``status`` carries the provider HTTP status when one is known.
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class IntegrityLockdownError(PipelineError):
    """Raised when the caller's integrity risk forbids any generation."""

    kind = "integrity_lockdown"

    def __init__(self, message: str, *, fallback_content: str | None = None) -> None:
        super().__init__(message)
        self.fallback_content = fallback_content


class ResponseGenerationError(DependencyError):
    """Raised when the LLM call fails; carries user-facing fallback text."""

    def __init__(self, message: str, *, fallback_content: str | None = None) -> None:
        super().__init__(message)
        self.fallback_content = fallback_content
