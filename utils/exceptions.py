"""
Custom Exceptions
Error taxonomy for research runs.
"""
from typing import Optional


class ResearchError(Exception):
    """Base error for the research run orchestrator."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class RunValidationError(ResearchError):
    """Create input rejected before a run exists."""
    pass


class RunNotFoundError(ResearchError):
    """Unknown run id."""

    def __init__(self, run_id: str):
        super().__init__(f"Research run {run_id} not found.")
        self.run_id = run_id


class CredentialError(ResearchError):
    """A required API key is missing. Fatal, never retried."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class SourceNetworkError(ResearchError):
    """Search or fetch transport failure."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.url = url


class SchemaError(ResearchError):
    """LLM output not parseable, or claim/citation invariant violated."""
    pass


class RunCancelledError(ResearchError):
    """Raised when the cancellation token of an active run has fired."""

    def __init__(self, message: str = "cancellation requested"):
        super().__init__(message)


class StorageError(ResearchError):
    """Run table could not be read or written."""
    pass


class LLMError(ResearchError):
    """LLM call failure."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider
