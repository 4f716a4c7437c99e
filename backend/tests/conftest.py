"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.config import Settings, get_settings
from app.core.security import create_access_token, get_password_hash
from app.database import Database
from app.main import create_app
from app.models import User
from app.services import (
    ConversationAggregator,
    MessageStore,
    NotificationBridge,
    PresenceRegistry,
    UserDirectory,
)


@pytest.fixture()
def settings() -> Settings:
    """Settings with broker fan-out disabled."""

    return get_settings().model_copy(
        update={
            "realtime_redis_url": None,
            "realtime_nats_url": None,
            "database_create_tables": False,
        }
    )


@pytest.fixture()
def database() -> Iterator[Database]:
    """Provide an in-memory SQLite database shared by every session."""

    db = Database(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db.open()
    db.create_all()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def db_session(database) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    with database.session() as session:
        yield session


@pytest.fixture()
def make_user(database) -> Callable[..., User]:
    """Return a factory persisting users with a known password."""

    counter = {"value": 0}

    def factory(name: str | None = None, *, password: str = "supersecret", is_active: bool = True) -> User:
        counter["value"] += 1
        with database.session() as session:
            user = User(
                login=f"user{counter['value']}",
                name=name or f"User {counter['value']}",
                hashed_password=get_password_hash(password),
                is_active=is_active,
            )
            session.add(user)
            session.commit()
            return user

    return factory


@pytest.fixture()
def token_for() -> Callable[[User], str]:
    def build(user: User) -> str:
        return create_access_token({"sub": str(user.id)})

    return build


@pytest.fixture()
def auth_headers(token_for) -> Callable[[User], dict[str, str]]:
    def build(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return build


@pytest.fixture()
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture()
def notifications(database, settings) -> NotificationBridge:
    return NotificationBridge(database, settings)


@pytest.fixture()
def store(database, presence, notifications, settings) -> MessageStore:
    return MessageStore(database, UserDirectory(presence), notifications, settings)


@pytest.fixture()
def aggregator(database, presence) -> ConversationAggregator:
    return ConversationAggregator(database, UserDirectory(presence))


@pytest.fixture()
def app(database, settings) -> FastAPI:
    return create_app(settings=settings, database=database)


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient bound to the in-memory database."""

    with TestClient(app) as test_client:
        yield test_client
