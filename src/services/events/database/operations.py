# Database operations shared by the event series engine
# Event lookup, occurrence addressing and role checks

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from .schema import Event
from ..core.access import (
    AccessGate,
    WRITE_ROLES,
    Role,
    effective_role,
    require_read,
    require_write,
)
from ..core.errors import EventNotFoundError
from ..core.utils import parse_instance_id

logger = logging.getLogger(__name__)


# ============================================================================
# EVENT LOOKUP
# ============================================================================


def get_event_or_raise(session: Session, event_id: str) -> Event:
    """
    Get an event by primary key.

    Raises:
        EventNotFoundError: If no such event exists
    """
    event = session.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    return event


def resolve_target(session: Session, target_id: str) -> tuple[Event, Optional[date]]:
    """
    Resolve an event ID or an {event_id}_{date} occurrence ID.

    A stored event whose own ID happens to look like an occurrence ID
    wins over the occurrence reading.

    Returns:
        (event, instance_date) where instance_date is None for plain IDs

    Raises:
        EventNotFoundError: If neither reading matches an event
    """
    event = session.get(Event, target_id)
    if event is not None:
        return event, None

    base_id, instance_date = parse_instance_id(target_id)
    if instance_date is not None:
        event = session.get(Event, base_id)
        if event is not None:
            return event, instance_date

    raise EventNotFoundError(target_id)


# ============================================================================
# ROLE CHECKS
# ============================================================================


def event_role(gate: AccessGate, user_id: str, event: Event) -> Role:
    """Role of a user on one event: calendar role, upgraded for the creator."""
    calendar_role = gate.resolve_role(user_id, event.calendar_id)
    return effective_role(calendar_role, event.created_by, user_id)


def check_event_read(gate: AccessGate, user_id: str, event: Event) -> Role:
    role = event_role(gate, user_id, event)
    require_read(role, f"event {event.id}")
    return role


def check_event_write(gate: AccessGate, user_id: str, event: Event) -> Role:
    role = event_role(gate, user_id, event)
    if role not in WRITE_ROLES:
        logger.info(
            "Denied write on event %s for user %s (role: %s)",
            event.id,
            user_id,
            role.value,
        )
    require_write(role, f"event {event.id}")
    return role


def check_calendar_write(gate: AccessGate, user_id: str, calendar_id: str) -> Role:
    role = gate.resolve_role(user_id, calendar_id)
    require_write(role, f"calendar {calendar_id}")
    return role


def check_calendar_read(gate: AccessGate, user_id: str, calendar_id: str) -> Role:
    role = gate.resolve_role(user_id, calendar_id)
    require_read(role, f"calendar {calendar_id}")
    return role
