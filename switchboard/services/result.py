"""Success-or-error value passed across service seams.

Transport and handoff calls return a Result instead of raising so callers
can decide whether a failure matters. `unwrap()` converts a failure back
into the matching `SwitchboardError` when the caller wants exceptions.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from switchboard.errors import SwitchboardError, error_for_code

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_error(exc: SwitchboardError) -> "Result[T]":
        return Result(ok=False, error=exc.message, error_code=exc.code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def unwrap(self) -> T:
        if self.ok:
            return self.value
        raise error_for_code(self.error_code, self.error)
