"""Typed outcome for multi-step operations.

Operations that compose several external calls return a Result instead of
raising, so callers branch on `ok` rather than on except blocks.
"""

from __future__ import annotations

__all__ = ["Result"]

from dataclasses import dataclass
from typing import Generic, TypeVar

from state_portal.exceptions import PortalError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation.

    Attributes:
        value: Payload when the operation succeeded.
        error: The failure when it did not.
    """

    value: T | None = None
    error: PortalError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PortalError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
