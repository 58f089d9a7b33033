# tasks/ai_engine/exceptions.py
"""
Error taxonomy for the enrichment engine.

Not-found errors are fatal to the current operation and are surfaced to the
caller. An entity owned by another user is reported as not found. Provider and parse errors never leave the engine:
call sites catch them and fall back to documented defaults.
"""

from typing import Optional


class EnrichmentError(Exception):
    """Base class for errors raised by the enrichment engine."""


class NotFoundError(EnrichmentError):
    """The requested entity does not exist (or is soft-deleted)."""


class ProposalNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class CompletedTaskNotFoundError(NotFoundError):
    """History recording was asked for a task that is not completed."""


# ---------------------------------------------------------------------------
# Provider layer
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Raised when the generative model cannot produce a response."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class ProviderNotConfiguredError(ProviderError):
    """Raised when the provider is used but not properly configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code="PROVIDER_NOT_CONFIGURED")


class ProviderUnavailableError(ProviderError):
    """Raised when the provider encounters a transient or API failure."""


class ModelResponseError(ValueError):
    """Model output could not be turned into the expected structure."""
