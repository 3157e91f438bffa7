"""Shared plumbing for room-scoped services: clock, outcome mapping and best-effort broadcast."""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings, get_settings
from app.models import Room, RoomReference
from app.monitoring.metrics import messaging_operations_total, realtime_publish_errors_total
from app.services.errors import (
    BroadcastError,
    ChatError,
    DataIntegrityError,
    Outcome,
    TransientStorageError,
)
from app.services.permissions import require_room
from parley.realtime.managers import BACKEND_NAME, RoomFanout

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def system_clock() -> int:
    return int(time.time())


def operation(name: str) -> Callable[[F], Callable[..., Awaitable[Outcome[Any]]]]:
    """Run a service coroutine as one unit of work and wrap its result in an :class:`Outcome`.

    Expected rejections (:class:`ChatError`) become failed outcomes. Storage
    failures roll the session back and are reported as transient; integrity
    problems are logged and reported without detail.
    """

    def decorator(func: F) -> Callable[..., Awaitable[Outcome[Any]]]:
        @functools.wraps(func)
        async def wrapper(self: "RoomService", *args: Any, **kwargs: Any) -> Outcome[Any]:
            try:
                value = await func(self, *args, **kwargs)
            except DataIntegrityError as exc:
                self._db.rollback()
                logger.error("Data integrity failure during %s: %s", name, exc)
                outcome: Outcome[Any] = Outcome.failure(exc)
            except ChatError as exc:
                self._db.rollback()
                outcome = Outcome.failure(exc)
            except (StaleDataError, OperationalError) as exc:
                self._db.rollback()
                logger.warning("Transient storage failure during %s: %s", name, exc)
                outcome = Outcome.failure(
                    TransientStorageError("Storage is temporarily unavailable, please retry")
                )
            except (DBAPIError, SQLAlchemyError):
                self._db.rollback()
                logger.exception("Storage error during %s", name)
                outcome = Outcome.failure(DataIntegrityError("storage error"))
            else:
                outcome = Outcome.success(value)
            messaging_operations_total.labels(name, "ok" if outcome.ok else outcome.error).inc()
            return outcome

        return wrapper

    return decorator


class RoomService:
    """Base for services operating on one room per call."""

    def __init__(
        self,
        db: Session,
        fanout: RoomFanout | None = None,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db
        self._fanout = fanout
        self._clock = clock or system_clock
        self._settings = settings or get_settings()

    def _now(self) -> int:
        return int(self._clock())

    def _room(self, reference: RoomReference) -> Room:
        return require_room(reference, self._db)

    async def _publish(
        self,
        room: RoomReference,
        event: str,
        payload: dict[str, Any],
        *,
        exclude_user: int | None = None,
        echo_to_user: int | None = None,
    ) -> None:
        """Broadcast after the state change is committed; delivery problems are only logged."""

        if self._fanout is None:
            return
        try:
            await self._fanout.publish(
                room.key,
                event,
                {"room": room.to_payload(), **payload},
                exclude_user=exclude_user,
                echo_to_user=echo_to_user,
            )
        except BroadcastError as exc:
            realtime_publish_errors_total.labels("rooms", BACKEND_NAME, "error").inc()
            logger.warning("Broadcast of %s to %s failed: %s", event, room.key, exc)

    async def _detach(self, room: RoomReference, user_id: int) -> None:
        """Stop live delivery to a user whose membership was just deactivated."""

        if self._fanout is None:
            return
        await self._fanout.remove_user(room.key, user_id)


__all__ = ["Clock", "RoomService", "operation", "system_clock"]
