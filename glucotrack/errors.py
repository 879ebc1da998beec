from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class GlucotrackError(Exception):
    """Base class for errors raised at the glucotrack I/O boundaries."""


class StorageError(GlucotrackError):
    """A backend query or write failed."""


class SubscriptionError(GlucotrackError):
    """A realtime subscription was rejected or timed out."""


class SupersededError(GlucotrackError):
    """A result arrived after the conversation it belonged to was replaced."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Typed success/failure returned where collaborator I/O is involved."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


__all__ = ["GlucotrackError", "Result", "StorageError", "SubscriptionError", "SupersededError"]
