"""Custom exceptions for the storytest pipeline."""

from typing import List, Optional


class StorytestError(Exception):
    """Base exception for storytest errors."""
    pass


class ConfigurationError(StorytestError):
    """Raised when configuration is invalid or a required credential is missing."""
    pass


class KnowledgeBaseError(StorytestError):
    """
    Raised when the locator or route catalog cannot be loaded.

    Attributes:
        path: Catalog file that failed to load
    """

    def __init__(self, path: str, details: str):
        self.path = path
        self.details = details
        super().__init__(f"Failed to load knowledge base file {path}: {details}")


class LLMRuntimeError(StorytestError):
    """Raised when a single LLM provider call fails."""
    pass


class ModelInvocationError(StorytestError):
    """
    Raised when the model client has exhausted its retry budget.

    Attributes:
        attempts: Number of calls that were made
        last_error: The error raised by the final attempt
    """

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"LLM failed after {attempts} attempts. Last error: {last_error}")


class ResponseParseError(StorytestError):
    """
    Raised when a model response cannot be parsed into the expected structure.

    Attributes:
        raw_response: The response text that failed to parse
        missing_fields: Required fields that were absent, if that was the cause
    """

    def __init__(self, message: str, raw_response: str = "", missing_fields: Optional[List[str]] = None):
        self.raw_response = raw_response
        self.missing_fields = missing_fields or []
        super().__init__(message)
