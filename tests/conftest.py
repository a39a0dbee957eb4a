"""
Shared pytest fixtures for the event series tests.

Each test gets a fresh temporary SQLite database with two calendars:
- cal-work: owned by alice; carol has accepted edit, dave accepted view,
  erin a pending edit share
- cal-home: owned by bob
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from event_platform.session import SessionManager, build_engine
from services.events.core.access import Role
from services.events.database import Calendar, CalendarShare, EventOperations


WEEKLY_MONDAYS = "FREQ=WEEKLY;BYDAY=MO"


class FixedClock:
    """Deterministic clock; tests move it with set()."""

    def __init__(self, now: datetime):
        self.now = now

    def set(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class StaticAccessGate:
    """AccessGate with roles given up front."""

    def __init__(self, roles: dict[tuple[str, str], Role]):
        self.roles = roles

    def resolve_role(self, user_id: str, calendar_id: str) -> Role:
        return self.roles.get((user_id, calendar_id), Role.none)

    def accessible_calendars(self, user_id: str) -> list[str]:
        return sorted(
            calendar_id
            for (user, calendar_id), role in self.roles.items()
            if user == user_id and role is not Role.none
        )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_db():
    """Create a temporary SQLite database for testing."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")

    engine = build_engine(f"sqlite:///{db_path}")
    session_manager = SessionManager(engine)
    session_manager.create_schema()

    session = session_manager.get_session()

    yield session, session_manager

    session.close()
    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


def seed_calendars(session) -> None:
    session.add_all(
        [
            Calendar(id="cal-work", owner_id="alice", name="Work", color="#4285f4"),
            Calendar(id="cal-home", owner_id="bob", name="Home"),
        ]
    )
    session.flush()
    session.add_all(
        [
            CalendarShare(
                id="share-carol",
                calendar_id="cal-work",
                user_id="carol",
                permission="edit",
                status="accepted",
            ),
            CalendarShare(
                id="share-dave",
                calendar_id="cal-work",
                user_id="dave",
                permission="view",
                status="accepted",
            ),
            CalendarShare(
                id="share-erin",
                calendar_id="cal-work",
                user_id="erin",
                permission="edit",
                status="pending",
            ),
        ]
    )
    session.commit()


@pytest.fixture
def session(sqlite_db):
    session, _ = sqlite_db
    seed_calendars(session)
    return session


@pytest.fixture
def clock():
    return FixedClock(utc(2024, 6, 1, 9, 0))


@pytest.fixture
def ops(session, clock):
    """Operations backed by the calendar share tables."""
    return EventOperations(session, clock=clock)


@pytest.fixture
def weekly_event(ops):
    """Weekly Monday series starting 2024-06-03 10:00-11:00 UTC."""
    return ops.create_series(
        "alice",
        calendar_id="cal-work",
        title="Weekly sync",
        start_time="2024-06-03T10:00:00Z",
        end_time="2024-06-03T11:00:00Z",
        rule=WEEKLY_MONDAYS,
    )
