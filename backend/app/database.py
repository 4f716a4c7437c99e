from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.models import Base


class Database:
    """Owns the SQLAlchemy engine and session factory for one process.

    The database is created explicitly, opened when the application starts and
    closed at shutdown. Services receive the instance instead of importing a
    module level engine.
    """

    def __init__(self, url: str, *, echo: bool = False, **engine_options: Any) -> None:
        self._url = url
        self._echo = echo
        self._engine_options = engine_options
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> None:
        if self._engine is not None:
            return
        options = dict(self._engine_options)
        if not self._url.startswith("sqlite"):
            # pool_pre_ping: verify pooled connections before handing them out
            options.setdefault("pool_size", 10)
            options.setdefault("max_overflow", 20)
            options.setdefault("pool_pre_ping", True)
        self._engine = create_engine(self._url, echo=self._echo, future=True, **options)
        self._session_factory = sessionmaker(
            bind=self._engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True
        )

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for short-lived database sessions.

        Uncommitted work is rolled back when the block exits.
        """
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Iterator[Session]:
    with get_database(request).session() as db:
        yield db
