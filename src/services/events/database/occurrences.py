# Occurrence merging for recurring event series
# Combines rule expansion, override rows and the base event into one view

import logging
from datetime import date, datetime
from typing import Optional, Sequence, Union

from sqlalchemy.orm import Session
from sqlalchemy import select, and_, or_

from .schema import Event, EventInstance
from .pydantic_schemas import OccurrenceView
from .overrides import fetch_overrides, get_override, override_times
from .operations import (
    check_calendar_read,
    check_event_read,
    get_event_or_raise,
    resolve_target,
)
from ..core.access import AccessGate
from ..core.errors import (
    InstanceNotFoundError,
    InvalidFieldError,
    NotRecurringError,
)
from ..core.recurrence import DEFAULT_MAX_INSTANCES, expand_occurrences
from ..core.utils import (
    end_of_day,
    ensure_utc,
    format_instance_id,
    intervals_overlap,
    shift_to_date,
    start_of_day,
    to_storage,
)

logger = logging.getLogger(__name__)


# ============================================================================
# VIEW CONSTRUCTION
# ============================================================================


def _base_fields(event: Event) -> dict:
    return {
        "original_event_id": event.id,
        "calendar_id": event.calendar_id,
        "calendar_name": event.calendar_name,
        "calendar_color": event.calendar_color,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "is_all_day": event.is_all_day,
        "color": event.color,
        "visibility": event.visibility,
        "status": event.status,
        "created_by": event.created_by,
        "version": event.version,
        "recurrence_rule": (
            event.recurrence_rule.rule_text if event.recurrence_rule else None
        ),
        "created_at": event.created_at,
        "updated_at": event.updated_at,
    }


def single_event_view(event: Event) -> OccurrenceView:
    """View of a non-recurring event as its own single occurrence."""
    return OccurrenceView(
        id=event.id,
        start_time=event.start_utc,
        end_time=event.end_utc,
        is_recurring_instance=False,
        is_exception=False,
        instance_date=None,
        **_base_fields(event),
    )


def default_occurrence_view(event: Event, instance_date: date) -> OccurrenceView:
    """View of an unmodified occurrence: series times shifted onto the date."""
    start, end = shift_to_date(event.start_utc, event.end_utc, instance_date)
    return OccurrenceView(
        id=format_instance_id(event.id, instance_date),
        start_time=start,
        end_time=end,
        is_recurring_instance=True,
        is_exception=False,
        instance_date=instance_date,
        **_base_fields(event),
    )


def override_occurrence_view(event: Event, row: EventInstance) -> OccurrenceView:
    """View of an edited occurrence; override fields win over the event's."""
    fields = _base_fields(event)
    for key, value in (row.exception_data or {}).items():
        if key in fields and value is not None:
            fields[key] = value
    if row.status is not None:
        fields["status"] = row.status
    if row.updated_at is not None:
        fields["updated_at"] = row.updated_at

    start, end = override_times(event, row)
    return OccurrenceView(
        id=format_instance_id(event.id, row.instance_date),
        start_time=start,
        end_time=end,
        is_recurring_instance=True,
        is_exception=True,
        instance_date=row.instance_date,
        **fields,
    )


def _sort_key(view: OccurrenceView) -> tuple[datetime, str]:
    return view.start_time, view.id


# ============================================================================
# MERGE
# ============================================================================


def merge_occurrences(
    event: Event,
    overrides: Sequence[EventInstance],
    range_start: datetime,
    range_end: datetime,
    *,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> list[OccurrenceView]:
    """
    Build the occurrence list of one event for a window.

    Default occurrences come from expanding the rule with the event's
    exception dates excluded. Overrides are added as they are: their dates
    are already excluded from expansion, so the two sets never share a date.
    """
    if event.recurrence_rule is None:
        if intervals_overlap(event.start_utc, event.end_utc, range_start, range_end):
            return [single_event_view(event)]
        return []

    starts = expand_occurrences(
        event.recurrence_rule.to_spec(),
        event.start_utc,
        range_start,
        range_end,
        event.exception_dates,
        max_instances=max_instances,
    )

    views = [default_occurrence_view(event, start.date()) for start in starts]
    views.extend(override_occurrence_view(event, row) for row in overrides)
    views.sort(key=_sort_key)
    return views


def occurrences_for_event(
    session: Session,
    event: Event,
    range_start: datetime,
    range_end: datetime,
    *,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> list[OccurrenceView]:
    """Fetch the overrides of one event and merge them for a window."""
    range_start = ensure_utc(range_start)
    range_end = ensure_utc(range_end)

    overrides: list[EventInstance] = []
    if event.recurrence_rule is not None:
        overrides = fetch_overrides(
            session, event.id, range_start.date(), range_end.date()
        )
    return merge_occurrences(
        event, overrides, range_start, range_end, max_instances=max_instances
    )


# ============================================================================
# QUERIES
# ============================================================================


def list_occurrences(
    session: Session,
    gate: AccessGate,
    user_id: str,
    range_start: datetime,
    range_end: datetime,
    calendar_ids: Optional[Sequence[str]] = None,
    *,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> list[OccurrenceView]:
    """
    List every occurrence visible to a user within a window.

    Args:
        session: Database session
        gate: Role resolver
        user_id: Caller
        range_start: Inclusive window start
        range_end: Inclusive window end
        calendar_ids: Calendars to include; defaults to every calendar the
            user owns or has an accepted share on
        max_instances: Expansion cap per series

    Returns:
        Occurrences sorted by start time, then ID

    Raises:
        InvalidFieldError: If the window ends before it starts
        CalendarNotFoundError: If a named calendar does not exist
        PermissionDeniedError: If the user has no role on a named calendar
    """
    range_start = ensure_utc(range_start)
    range_end = ensure_utc(range_end)
    if range_end < range_start:
        raise InvalidFieldError("end", "Window end must not be before its start")

    if calendar_ids:
        ids = list(dict.fromkeys(calendar_ids))
        for calendar_id in ids:
            check_calendar_read(gate, user_id, calendar_id)
    else:
        ids = gate.accessible_calendars(user_id)
    if not ids:
        return []

    # Nothing starting after the window can occur in it; single events
    # must also end at or after its start
    query = select(Event).where(
        and_(
            Event.calendar_id.in_(ids),
            Event.start_time <= to_storage(range_end),
            or_(
                Event.recurrence_rule.has(),
                Event.end_time >= to_storage(range_start),
            ),
        )
    )
    events = session.execute(query).scalars().all()

    views: list[OccurrenceView] = []
    for event in events:
        views.extend(
            occurrences_for_event(
                session, event, range_start, range_end, max_instances=max_instances
            )
        )
    views.sort(key=_sort_key)
    logger.debug(
        "Listed %d occurrences from %d events in %d calendars",
        len(views),
        len(events),
        len(ids),
    )
    return views


def get_occurrence(
    session: Session,
    gate: AccessGate,
    user_id: str,
    event_id: str,
    instance_date: date,
    *,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> OccurrenceView:
    """
    Resolve one {event_id}_{date} occurrence.

    Expansion is strict here, so a corrupt rule surfaces as
    RecurrenceParseError instead of an empty result.

    Raises:
        EventNotFoundError: If the event does not exist
        NotRecurringError: If the event has no recurrence rule
        InstanceNotFoundError: If the series has no occurrence on that date
        PermissionDeniedError: If the user cannot read the event
        RecurrenceParseError: If the stored rule is corrupt
    """
    event = get_event_or_raise(session, event_id)
    check_event_read(gate, user_id, event)
    if event.recurrence_rule is None:
        raise NotRecurringError(event.id)

    occurrence_id = format_instance_id(event.id, instance_date)
    spec = event.recurrence_rule.to_spec().validate()

    row = get_override(session, event.id, instance_date)
    if row is not None:
        return override_occurrence_view(event, row)

    if instance_date in event.exception_dates:
        raise InstanceNotFoundError(occurrence_id)

    starts = expand_occurrences(
        spec,
        event.start_utc,
        start_of_day(instance_date),
        end_of_day(instance_date),
        strict=True,
        max_instances=max_instances,
    )
    if not starts:
        raise InstanceNotFoundError(occurrence_id)
    return default_occurrence_view(event, instance_date)


def get_event(
    session: Session,
    gate: AccessGate,
    user_id: str,
    target_id: str,
    *,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> Union[Event, OccurrenceView]:
    """
    Fetch an event by ID, or one occurrence by its {event_id}_{date} ID.

    A recurring event's rule is validated on direct access.
    """
    event, instance_date = resolve_target(session, target_id)
    if instance_date is not None:
        return get_occurrence(
            session,
            gate,
            user_id,
            event.id,
            instance_date,
            max_instances=max_instances,
        )

    check_event_read(gate, user_id, event)
    if event.recurrence_rule is not None:
        event.recurrence_rule.to_spec().validate()
    return event
