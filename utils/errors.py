from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class QuotationError(Exception):
    """Client-caused failure reported as a structured 4xx body.

    Covers both malformed input (blank account, unknown market, bad amount)
    and domain preconditions detected after the market snapshot is read
    (token is not collateral, amount above balance, baseBorrowMin).
    """

    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    def to_body(self) -> dict:
        return {"code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"QuotationError(code={self.code!r}, message={self.message!r})"


class UpstreamError(Exception):
    """A chain read or routing API call failed. Never shown verbatim to clients."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


@dataclass
class Result(Generic[T]):
    """Success/failure container returned by the data-fetch step"""
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
        return self.value
