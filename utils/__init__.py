"""
Utils Module
Shared logging and error types.
"""
from .logger import setup_logger
from .exceptions import (
    ResearchError,
    RunValidationError,
    RunNotFoundError,
    CredentialError,
    SourceNetworkError,
    SchemaError,
    RunCancelledError,
    StorageError,
    LLMError,
)

__all__ = [
    "setup_logger",
    "ResearchError",
    "RunValidationError",
    "RunNotFoundError",
    "CredentialError",
    "SourceNetworkError",
    "SchemaError",
    "RunCancelledError",
    "StorageError",
    "LLMError",
]
