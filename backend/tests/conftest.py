"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import database
from app.config import get_settings
from app.database import get_db
from app.main import app
from app.models import Base, Room, RoomKind, RoomMember, RoomRole, RoomState, User
from app.monitoring.metrics import (
    messaging_operations_total,
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
)
from parley.realtime import get_room_manager, get_typing_store


class RecordingFanout:
    """Fan-out double that remembers every publish and detach call."""

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []
        self.removed: list[tuple[str, int]] = []

    async def publish(
        self,
        room_key: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude_user: int | None = None,
        echo_to_user: int | None = None,
    ) -> int:
        self.published.append(
            {
                "room": room_key,
                "event": event,
                "payload": payload,
                "exclude_user": exclude_user,
                "echo_to_user": echo_to_user,
            }
        )
        return 1

    async def remove_user(self, room_key: str, user_id: int) -> int:
        self.removed.append((room_key, user_id))
        return 1

    def events(self) -> list[str]:
        return [entry["event"] for entry in self.published]


class FixedClock:
    """Deterministic epoch-seconds clock that tests can advance."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_realtime_state() -> Iterator[None]:
    for metric in (
        messaging_operations_total,
        realtime_connections,
        realtime_events_total,
        realtime_publish_errors_total,
    ):
        metric.reset()
    get_typing_store()._entries.clear()
    yield
    get_typing_store()._entries.clear()
    manager = get_room_manager()
    manager._rooms.clear()
    manager._sessions.clear()


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    # Websocket handlers open their own short-lived sessions.
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def fanout() -> RecordingFanout:
    return RecordingFanout()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    counter = {"value": 0}

    def factory(login: str | None = None, display_name: str | None = None) -> User:
        counter["value"] += 1
        user = User(
            login=login or f"user{counter['value']}",
            display_name=display_name,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return factory


@pytest.fixture()
def make_room(db_session) -> Callable[..., Room]:
    """Create a room with its state row and the given memberships."""

    def factory(
        owner: User,
        *,
        kind: RoomKind = RoomKind.GROUP,
        members: dict[User, RoomRole] | None = None,
        title: str = "Room",
    ) -> Room:
        room = Room(kind=kind, title=title, owner_id=owner.id, last_activity_at=0)
        db_session.add(room)
        db_session.flush()
        db_session.add(RoomMember(room_id=room.id, user_id=owner.id, role=RoomRole.OWNER))
        for user, role in (members or {}).items():
            db_session.add(RoomMember(room_id=room.id, user_id=user.id, role=role))
        db_session.add(RoomState(room_id=room.id, slowmode_seconds=0))
        db_session.commit()
        return room

    return factory


def issue_access_token(user_id: int, expires_in: timedelta = timedelta(minutes=30)) -> str:
    """Sign a token the way the identity service does."""

    settings = get_settings()
    payload = {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture()
def access_token() -> Callable[[int], str]:
    return issue_access_token


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def build(user: User) -> dict[str, str]:
        token = issue_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return build
