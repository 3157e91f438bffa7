"""Messaging services: membership, storage, room state and the lifecycle engine."""

from .errors import (
    ChatError,
    ChatValidationError,
    DataIntegrityError,
    ForbiddenError,
    NotFoundError,
    Outcome,
    SlowModeError,
    TransientStorageError,
)

__all__ = [
    "ChatError",
    "ChatValidationError",
    "DataIntegrityError",
    "ForbiddenError",
    "NotFoundError",
    "Outcome",
    "SlowModeError",
    "TransientStorageError",
]
