from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from services.events.database.base import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections get foreign key enforcement."""
    engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class SessionManager:
    def __init__(
        self,
        base_engine: Engine,
    ):
        self.base_engine = base_engine
        self._factory = sessionmaker(bind=base_engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.base_engine)

    def get_session(self) -> Session:
        """
        Returns a raw session for the events database.
        Caller MUST manually commit/rollback and close the session.
        Use with_session() instead for automatic cleanup.
        """
        return self._factory()

    @contextmanager
    def with_session(self):
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.base_engine.dispose()
