"""
Shared types for the promotions platform
Result values returned by the services and the business exception hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type

# ===============================================================================
# RESULT TYPES
# ===============================================================================


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value"""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> Any:
        raise ValueError(f"Called unwrap_err on Ok: {self.value}")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed outcome carrying the reason, usually a message for the caller"""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        raise ValueError(f"Called unwrap on Err: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Ok[T] | Err[E]


# ===============================================================================
# BUSINESS EXCEPTIONS
# ===============================================================================


class BusinessError(Exception):
    """Base class for expected failures that services turn into Err results"""


class NotFoundError(BusinessError):
    """Requested entity does not exist"""
