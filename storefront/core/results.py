"""Explicit success/failure values for operations whose failures are expected."""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from storefront.core.errors import AppError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[AppError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AppError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, or raise the carried error for the HTTP layer to render."""
        if self.error is not None:
            raise self.error
        return self.value
