"""Explicit success/failure values returned by service operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a service call: either a value or an error message."""

    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising RuntimeError for a failed result."""
        if self.error is not None:
            raise RuntimeError(self.error)
        return self.value  # type: ignore[return-value]
