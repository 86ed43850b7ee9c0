"""Exception hierarchy for the GDP back office."""

from typing import Any


class BackofficeError(Exception):
    """Base exception for back office errors."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class ValidationError(BackofficeError):
    """Input rejected before any data was changed."""

    pass


class StorageError(BackofficeError):
    """Reading or writing the document store failed."""

    pass


class AssistantError(BackofficeError):
    """The AI assistant is unavailable or the call failed."""

    pass


class ExtractionError(AssistantError):
    """The AI returned no usable structured data."""

    pass
