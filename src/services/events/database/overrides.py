# Override store for recurring event series
# Sparse per-occurrence rows keyed by (event_id, instance_date)

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.orm import Session
from sqlalchemy import select, and_

from .schema import Event, EventInstance, EventStatus, OVERRIDE_FIELDS
from ..core.errors import InvalidFieldError
from ..core.utils import (
    ensure_utc,
    generate_instance_id,
    shift_to_date,
    to_storage,
)

logger = logging.getLogger(__name__)


# ============================================================================
# READS
# ============================================================================


def fetch_overrides(
    session: Session,
    event_id: str,
    range_start: date,
    range_end: date,
) -> list[EventInstance]:
    """
    Get every override row of an event dated within [range_start, range_end].

    Rows come back ordered by instance_date.
    """
    return list(
        session.execute(
            select(EventInstance)
            .where(
                and_(
                    EventInstance.event_id == event_id,
                    EventInstance.instance_date >= range_start,
                    EventInstance.instance_date <= range_end,
                )
            )
            .order_by(EventInstance.instance_date)
        ).scalars()
    )


def get_override(
    session: Session,
    event_id: str,
    instance_date: date,
) -> Optional[EventInstance]:
    """Get the override row for one occurrence, or None."""
    return session.execute(
        select(EventInstance).where(
            and_(
                EventInstance.event_id == event_id,
                EventInstance.instance_date == instance_date,
            )
        )
    ).scalar_one_or_none()


def override_times(event: Event, row: EventInstance) -> tuple[datetime, datetime]:
    """
    Effective start/end of an override.

    Missing values fall back to the series times shifted onto the row's date.
    """
    default_start, default_end = shift_to_date(
        event.start_utc, event.end_utc, row.instance_date
    )
    start = ensure_utc(row.start_time) if row.start_time is not None else default_start
    if row.end_time is not None:
        end = ensure_utc(row.end_time)
    else:
        end = start + (default_end - default_start)
    return start, end


# ============================================================================
# WRITES
# ============================================================================


def check_text_fields(fields: dict[str, Any]) -> None:
    """Raise InvalidFieldError unless every value is a string or None."""
    for field, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise InvalidFieldError(field, f"{field} must be a string")


def upsert_override(
    session: Session,
    event: Event,
    instance_date: date,
    *,
    now: datetime,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    status: Optional[EventStatus] = None,
    fields: Optional[dict[str, Any]] = None,
) -> EventInstance:
    """
    Create or update the override for (event.id, instance_date).

    A new row starts from the shifted series times. An existing row keeps
    its own times and field overrides except where the patch replaces them.
    Moving only the start keeps the occurrence's duration.

    Raises:
        InvalidFieldError: If the resulting end is before the start, or a
            field override is not one of title/description/location/color,
            or is not text
    """
    fields = dict(fields or {})
    unknown = sorted(set(fields) - set(OVERRIDE_FIELDS))
    if unknown:
        raise InvalidFieldError(unknown[0], f"Field cannot be overridden: {unknown[0]}")
    check_text_fields(fields)

    row = get_override(session, event.id, instance_date)
    created = row is None
    if row is None:
        default_start, default_end = shift_to_date(
            event.start_utc, event.end_utc, instance_date
        )
        row = EventInstance(
            id=generate_instance_id(),
            event_id=event.id,
            instance_date=instance_date,
            start_time=to_storage(default_start),
            end_time=to_storage(default_end),
            is_exception=True,
            exception_data=None,
            created_at=to_storage(now),
        )

    current_start, current_end = override_times(event, row)
    duration = current_end - current_start

    new_start = ensure_utc(start_time) if start_time is not None else current_start
    if end_time is not None:
        new_end = ensure_utc(end_time)
    elif start_time is not None:
        new_end = new_start + duration
    else:
        new_end = current_end

    if new_end < new_start:
        raise InvalidFieldError("endTime", "End time must not be before start time")

    row.start_time = to_storage(new_start)
    row.end_time = to_storage(new_end)
    row.is_exception = True
    if status is not None:
        row.status = status
    if fields:
        # Assign a new dict so the JSON column is flagged dirty
        merged = dict(row.exception_data or {})
        merged.update(fields)
        row.exception_data = merged
    row.updated_at = to_storage(now)

    if created:
        session.add(row)
    session.flush()

    logger.debug(
        "%s override %s for event %s on %s",
        "Created" if created else "Updated",
        row.id,
        event.id,
        instance_date,
    )
    return row


def delete_override(session: Session, event_id: str, instance_date: date) -> bool:
    """Delete the override for one occurrence. Returns False if none existed."""
    row = get_override(session, event_id, instance_date)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


def delete_overrides_after(session: Session, event_id: str, after: date) -> int:
    """Delete every override of an event dated strictly after `after`."""
    rows = session.execute(
        select(EventInstance).where(
            and_(
                EventInstance.event_id == event_id,
                EventInstance.instance_date > after,
            )
        )
    ).scalars().all()
    for row in rows:
        session.delete(row)
    session.flush()
    return len(rows)
