"""Domain errors raised by messaging services and the outcome wrapper returned to callers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from fastapi import status

T = TypeVar("T")


class ChatError(Exception):
    """Base class for expected failures of a messaging operation."""

    code: ClassVar[str] = "error"
    status_code: ClassVar[int] = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ChatValidationError(ChatError):
    """Malformed or empty input."""

    code = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class SlowModeError(ChatValidationError):
    """Sender must wait before posting again."""

    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Slow mode is active. Please wait {retry_after} seconds")
        self.retry_after = retry_after


class NotFoundError(ChatError):
    """Room, membership or message reference does not exist."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ChatError):
    """Caller lacks the required membership or role."""

    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class DataIntegrityError(ChatError):
    """Stored record is internally inconsistent; details are never shown to callers."""

    code = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_reason: ClassVar[str] = "Internal error"


class TransientStorageError(ChatError):
    """Storage failed for infrastructural reasons; the caller may retry."""

    code = "transient"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class BroadcastError(ChatError):
    """Fan-out delivery failed. Logged, never reported as an operation failure."""

    code = "broadcast"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass(slots=True)
class Outcome(Generic[T]):
    """Result of a messaging operation: a value or a rejection with a readable reason."""

    ok: bool
    value: T | None = None
    error: str | None = None
    reason: str | None = None
    status_code: int = status.HTTP_200_OK
    retry_after: int | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: ChatError) -> "Outcome[Any]":
        reason = exc.public_reason if isinstance(exc, DataIntegrityError) else exc.reason
        return cls(
            ok=False,
            error=exc.code,
            reason=reason,
            status_code=exc.status_code,
            retry_after=getattr(exc, "retry_after", None),
        )

    def unwrap(self) -> T:
        """Return the value of a successful outcome or raise for a rejected one."""

        if not self.ok:
            raise RuntimeError(f"Outcome rejected with {self.error}: {self.reason}")
        return self.value  # type: ignore[return-value]


__all__ = [
    "BroadcastError",
    "ChatError",
    "ChatValidationError",
    "DataIntegrityError",
    "ForbiddenError",
    "NotFoundError",
    "Outcome",
    "SlowModeError",
    "TransientStorageError",
]
