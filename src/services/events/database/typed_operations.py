"""
Typed operations wrapper for the event series engine.

This module provides a class-based API over the series operations. Each
call runs as one unit of work on the wrapped session: it commits on
success and rolls back on any error, with SQLAlchemy failures surfaced
as StorageError.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterator, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import mutations, occurrences, overrides
from .mutations import UNSET
from .operations import check_event_read, get_event_or_raise
from .pydantic_schemas import EventInstanceSchema, EventSchema, OccurrenceView
from .schema import Event
from ..core.access import AccessGate, ShareTableAccessGate
from ..core.errors import InvalidFieldError, StorageError
from ..core.recurrence import DEFAULT_MAX_INSTANCES, RecurrenceRuleSpec
from ..core.utils import calendar_now, coerce_date, coerce_datetime

logger = logging.getLogger(__name__)


def _parse_bound(field: str, value: Union[datetime, str]) -> datetime:
    try:
        return coerce_datetime(value)
    except (ValueError, TypeError, OverflowError):
        raise InvalidFieldError(field, f"Invalid datetime for {field}: {value!r}")


def _parse_day(value: Union[date, str]) -> date:
    try:
        return coerce_date(value)
    except (ValueError, TypeError, OverflowError):
        raise InvalidFieldError("instanceDate", f"Invalid instance date: {value!r}")


class EventOperations:
    """
    Typed operations for recurring event series.

    Wraps the module-level operations, manages the transaction on the
    given session and returns pydantic models.

    Example usage:
        ops = EventOperations(session)

        # Create a weekly series
        event = ops.create_series(
            "alice",
            calendar_id="work",
            title="Standup",
            start_time="2024-06-03T10:00:00Z",
            end_time="2024-06-03T10:15:00Z",
            rule="FREQ=WEEKLY;BYDAY=MO,WE",
        )

        # Move one occurrence
        ops.update_instance("alice", event.id, "2024-06-05", {"start_time": "2024-06-05T11:00:00Z"})

        # Read a window
        items = ops.list_occurrences("alice", "2024-06-01T00:00:00Z", "2024-06-30T23:59:59Z")
    """

    def __init__(
        self,
        session: Session,
        *,
        gate: Optional[AccessGate] = None,
        clock: Callable[[], datetime] = calendar_now,
        max_instances: int = DEFAULT_MAX_INSTANCES,
    ):
        """
        Initialize with a SQLAlchemy session.

        Args:
            session: SQLAlchemy session for database operations
            gate: Role resolver (defaults to the calendar share tables)
            clock: Source of the current time
            max_instances: Expansion cap per series in window queries
        """
        self.session = session
        self.gate = gate if gate is not None else ShareTableAccessGate(session)
        self.clock = clock
        self.max_instances = max_instances

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Storage operation failed, rolled back: %s", exc)
            raise StorageError() from exc
        except Exception:
            self.session.rollback()
            raise

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    def list_occurrences(
        self,
        user_id: str,
        start: Union[datetime, str],
        end: Union[datetime, str],
        calendar_ids: Optional[Sequence[str]] = None,
    ) -> list[OccurrenceView]:
        """
        List occurrences within [start, end] on the given calendars.

        Args:
            user_id: Caller
            start: Window start (datetime or RFC3339)
            end: Window end (datetime or RFC3339)
            calendar_ids: Calendars to read; all accessible ones when omitted

        Returns:
            Occurrences sorted by start time
        """
        with self._unit_of_work() as session:
            return occurrences.list_occurrences(
                session,
                self.gate,
                user_id,
                _parse_bound("start", start),
                _parse_bound("end", end),
                calendar_ids,
                max_instances=self.max_instances,
            )

    def get_event(self, user_id: str, event_id: str) -> Union[EventSchema, OccurrenceView]:
        """
        Get a series/event by ID, or one occurrence by {event_id}_{date}.

        Raises:
            EventNotFoundError: If no event matches
            InstanceNotFoundError: If the series has no occurrence on the date
        """
        with self._unit_of_work() as session:
            result = occurrences.get_event(
                session,
                self.gate,
                user_id,
                event_id,
                max_instances=self.max_instances,
            )
            if isinstance(result, Event):
                return EventSchema.model_validate(result)
            return result

    def get_occurrence(
        self,
        user_id: str,
        event_id: str,
        instance_date: Union[date, str],
    ) -> OccurrenceView:
        """Get one occurrence of a series by date."""
        with self._unit_of_work() as session:
            return occurrences.get_occurrence(
                session,
                self.gate,
                user_id,
                event_id,
                _parse_day(instance_date),
                max_instances=self.max_instances,
            )

    def list_overrides(
        self,
        user_id: str,
        event_id: str,
        start: Union[date, str],
        end: Union[date, str],
    ) -> list[EventInstanceSchema]:
        """List the override rows of a series dated within [start, end]."""
        with self._unit_of_work() as session:
            event = get_event_or_raise(session, event_id)
            check_event_read(self.gate, user_id, event)
            rows = overrides.fetch_overrides(
                session, event.id, _parse_day(start), _parse_day(end)
            )
            return [EventInstanceSchema.model_validate(row) for row in rows]

    # ========================================================================
    # WRITE OPERATIONS
    # ========================================================================

    def create_series(
        self,
        user_id: str,
        *,
        calendar_id: Optional[str] = None,
        title: Optional[str] = None,
        start_time: Optional[Union[datetime, str]] = None,
        end_time: Optional[Union[datetime, str]] = None,
        rule: Union[RecurrenceRuleSpec, str, None] = None,
        **fields: Any,
    ) -> EventSchema:
        """
        Create an event, recurring when `rule` is given.

        Args:
            user_id: Caller; recorded as the event's creator
            calendar_id: Target calendar
            title: Event title
            start_time: Start (datetime or RFC3339)
            end_time: End (datetime or RFC3339)
            rule: Recurrence rule text or RecurrenceRuleSpec
            **fields: description, location, is_all_day, color, visibility, status

        Returns:
            The created event
        """
        with self._unit_of_work() as session:
            event = mutations.create_series(
                session,
                self.gate,
                user_id,
                now=self.clock(),
                calendar_id=calendar_id,
                title=title,
                start_time=start_time,
                end_time=end_time,
                rule=rule,
                **fields,
            )
            return EventSchema.model_validate(event)

    def update_series(
        self,
        user_id: str,
        event_id: str,
        patch: Optional[dict[str, Any]] = None,
        rule: Any = UNSET,
    ) -> EventSchema:
        """
        Update a whole series.

        Args:
            user_id: Caller
            event_id: Series ID (occurrence IDs are rejected)
            patch: Fields to change
            rule: Omit to keep the rule, pass a rule to replace it, None to remove it

        Returns:
            The updated event
        """
        with self._unit_of_work() as session:
            event = mutations.update_series(
                session,
                self.gate,
                user_id,
                event_id,
                patch,
                rule,
                now=self.clock(),
            )
            return EventSchema.model_validate(event)

    def update_instance(
        self,
        user_id: str,
        event_id: str,
        instance_date: Union[date, str],
        patch: Optional[dict[str, Any]] = None,
    ) -> OccurrenceView:
        """Edit one occurrence; returns the resulting occurrence."""
        with self._unit_of_work() as session:
            return mutations.update_instance(
                session,
                self.gate,
                user_id,
                event_id,
                instance_date,
                patch,
                now=self.clock(),
            )

    def delete_occurrence(
        self,
        user_id: str,
        target_id: str,
        scope: Optional[str] = None,
    ) -> str:
        """
        Delete with scope "this", "future" or "all".

        Returns:
            The scope that was applied
        """
        with self._unit_of_work() as session:
            return mutations.delete_occurrence(
                session,
                self.gate,
                user_id,
                target_id,
                scope,
                now=self.clock(),
            )
