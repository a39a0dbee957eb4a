# Series mutations for recurring events
# Create, update and delete across events, rules and override rows

import logging
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from .schema import (
    Event,
    EventStatus,
    EventVisibility,
    RecurrenceRule,
    OVERRIDE_FIELDS,
)
from .pydantic_schemas import OccurrenceView
from .operations import (
    check_calendar_write,
    check_event_write,
    get_event_or_raise,
    resolve_target,
)
from .overrides import (
    check_text_fields,
    delete_override,
    delete_overrides_after,
    upsert_override,
)
from .occurrences import override_occurrence_view
from ..core.access import AccessGate
from ..core.errors import (
    InvalidFieldError,
    NotRecurringError,
    OccurrenceAddressError,
    RequiredFieldError,
)
from ..core.recurrence import RecurrenceRuleSpec, coerce_rule, truncate_rule
from ..core.utils import (
    coerce_date,
    coerce_datetime,
    generate_event_id,
    parse_instance_id,
    to_storage,
    yesterday,
)

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks an omitted argument where None carries meaning
UNSET: Any = _Unset()

SCOPE_THIS = "this"
SCOPE_FUTURE = "future"
SCOPE_ALL = "all"
SCOPES = (SCOPE_THIS, SCOPE_FUTURE, SCOPE_ALL)

# Event columns a series update may change
SERIES_PATCH_FIELDS = (
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "is_all_day",
    "color",
    "visibility",
    "status",
)

# Occurrence fields an instance update may change
INSTANCE_PATCH_FIELDS = ("start_time", "end_time", "status") + OVERRIDE_FIELDS

_API_FIELD_NAMES = {
    "calendar_id": "calendarId",
    "start_time": "startTime",
    "end_time": "endTime",
    "is_all_day": "isAllDay",
}

RuleArg = Union[RecurrenceRuleSpec, str, None]


# ============================================================================
# FIELD COERCION
# ============================================================================


def _api_name(field: str) -> str:
    return _API_FIELD_NAMES.get(field, field)


def _coerce_time(field: str, value: Any) -> datetime:
    try:
        return coerce_datetime(value)
    except (ValueError, TypeError, OverflowError):
        name = _api_name(field)
        raise InvalidFieldError(name, f"Invalid datetime for {name}: {value!r}")


def _coerce_enum(enum_cls: type[PyEnum], field: str, value: Any) -> PyEnum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidFieldError(field, f"{field} must be one of: {allowed}")


def _check_flag(field: str, value: Any) -> bool:
    if not isinstance(value, bool):
        name = _api_name(field)
        raise InvalidFieldError(name, f"{name} must be a boolean")
    return value


def _check_order(start: datetime, end: datetime) -> None:
    if end < start:
        raise InvalidFieldError("endTime", "End time must not be before start time")


def _unknown_fields(patch: dict[str, Any], allowed: tuple[str, ...]) -> None:
    for key in patch:
        if key not in allowed:
            name = _api_name(key)
            raise InvalidFieldError(name, f"Field cannot be updated: {name}")


# ============================================================================
# CREATE
# ============================================================================


def create_series(
    session: Session,
    gate: AccessGate,
    user_id: str,
    *,
    now: datetime,
    calendar_id: Optional[str] = None,
    title: Optional[str] = None,
    start_time: Optional[Union[datetime, str]] = None,
    end_time: Optional[Union[datetime, str]] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    is_all_day: Optional[bool] = False,
    color: Optional[str] = None,
    visibility: Optional[Union[EventVisibility, str]] = None,
    status: Optional[Union[EventStatus, str]] = None,
    rule: RuleArg = None,
) -> Event:
    """
    Create an event and, when a rule is given, its recurrence rule.

    Both rows are written in the caller's transaction.

    Raises:
        RequiredFieldError: If calendar_id, title, start_time or end_time is missing
        InvalidFieldError: If a value is malformed or end is before start
        RecurrenceParseError: If the rule is malformed
        CalendarNotFoundError: If the calendar does not exist
        PermissionDeniedError: If the user cannot write to the calendar
    """
    required = {
        "calendar_id": calendar_id,
        "title": title,
        "start_time": start_time,
        "end_time": end_time,
    }
    for field, value in required.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise RequiredFieldError(_api_name(field))
    check_text_fields(
        {
            "calendarId": calendar_id,
            "title": title,
            "description": description,
            "location": location,
            "color": color,
        }
    )
    all_day = _check_flag("is_all_day", False if is_all_day is None else is_all_day)

    start = _coerce_time("start_time", start_time)
    end = _coerce_time("end_time", end_time)
    _check_order(start, end)

    spec = coerce_rule(rule) if rule is not None else None

    check_calendar_write(gate, user_id, calendar_id)

    event = Event(
        id=generate_event_id(),
        calendar_id=calendar_id,
        title=title,
        description=description,
        location=location,
        start_time=to_storage(start),
        end_time=to_storage(end),
        is_all_day=all_day,
        color=color,
        visibility=_coerce_enum(
            EventVisibility, "visibility", visibility or EventVisibility.default
        ),
        status=_coerce_enum(EventStatus, "status", status or EventStatus.confirmed),
        created_by=user_id,
        version=1,
        created_at=to_storage(now),
        updated_at=to_storage(now),
    )
    if spec is not None:
        event.recurrence_rule = RecurrenceRule.from_spec(spec)

    session.add(event)
    session.flush()

    logger.info(
        "Created event %s in calendar %s%s",
        event.id,
        calendar_id,
        f" with rule {spec.to_rule_text()}" if spec else "",
    )
    return event


# ============================================================================
# UPDATE
# ============================================================================


def update_series(
    session: Session,
    gate: AccessGate,
    user_id: str,
    event_id: str,
    patch: Optional[dict[str, Any]] = None,
    rule: Any = UNSET,
    *,
    now: datetime,
) -> Event:
    """
    Apply a partial update to a whole series.

    Args:
        patch: Event fields to change (snake_case keys)
        rule: UNSET leaves the recurrence rule alone, a rule replaces or
            adds it, None removes it

    Raises:
        OccurrenceAddressError: If event_id is an {event_id}_{date} occurrence ID
        EventNotFoundError: If the event does not exist
        InvalidFieldError: If a field is unknown or malformed
        RecurrenceParseError: If the rule is malformed
        PermissionDeniedError: If the user cannot write to the event
    """
    patch = dict(patch or {})

    if session.get(Event, event_id) is None:
        _, instance_date = parse_instance_id(event_id)
        if instance_date is not None:
            raise OccurrenceAddressError(event_id)
    event = get_event_or_raise(session, event_id)
    check_event_write(gate, user_id, event)

    _unknown_fields(patch, SERIES_PATCH_FIELDS)
    check_text_fields({key: patch[key] for key in OVERRIDE_FIELDS if key in patch})

    if "title" in patch and (patch["title"] is None or not patch["title"].strip()):
        raise InvalidFieldError("title", "Title must not be empty")
    for field in ("start_time", "end_time"):
        if field in patch:
            if patch[field] is None:
                name = _api_name(field)
                raise InvalidFieldError(name, f"{name} must not be null")
            patch[field] = to_storage(_coerce_time(field, patch[field]))
    if "visibility" in patch:
        patch["visibility"] = _coerce_enum(
            EventVisibility, "visibility", patch["visibility"]
        )
    if "status" in patch:
        patch["status"] = _coerce_enum(EventStatus, "status", patch["status"])
    if "is_all_day" in patch:
        patch["is_all_day"] = _check_flag("is_all_day", patch["is_all_day"])

    spec = coerce_rule(rule) if rule is not UNSET and rule is not None else None

    for field, value in patch.items():
        setattr(event, field, value)
    _check_order(event.start_utc, event.end_utc)

    if rule is None:
        if event.recurrence_rule is not None:
            logger.info("Removing recurrence rule of event %s", event.id)
        event.recurrence_rule = None
    elif spec is not None:
        if event.recurrence_rule is None:
            event.recurrence_rule = RecurrenceRule.from_spec(spec)
        else:
            event.recurrence_rule.apply_spec(spec)

    event.touch(now)
    session.flush()

    logger.info(
        "Updated event %s (fields: %s, rule: %s, version %d)",
        event.id,
        ", ".join(sorted(patch)) or "-",
        "unchanged"
        if rule is UNSET
        else (spec.to_rule_text() if spec else "removed"),
        event.version,
    )
    return event


def update_instance(
    session: Session,
    gate: AccessGate,
    user_id: str,
    event_id: str,
    instance_date: Union[date, str],
    patch: Optional[dict[str, Any]] = None,
    *,
    now: datetime,
) -> OccurrenceView:
    """
    Edit one occurrence of a series.

    Upserts the override row for (event_id, instance_date) and adds the
    date to the event's exception dates. Applying the same patch twice
    leaves a single row.

    Raises:
        EventNotFoundError: If the event does not exist
        NotRecurringError: If the event has no recurrence rule
        InvalidFieldError: If a field is unknown or malformed
        PermissionDeniedError: If the user cannot write to the event
    """
    patch = dict(patch or {})
    try:
        instance_date = coerce_date(instance_date)
    except (ValueError, TypeError, OverflowError):
        raise InvalidFieldError(
            "instanceDate", f"Invalid instance date: {instance_date!r}"
        )

    event = get_event_or_raise(session, event_id)
    check_event_write(gate, user_id, event)
    if event.recurrence_rule is None:
        raise NotRecurringError(event.id)

    _unknown_fields(patch, INSTANCE_PATCH_FIELDS)

    start = end = None
    if patch.get("start_time") is not None:
        start = _coerce_time("start_time", patch["start_time"])
    if patch.get("end_time") is not None:
        end = _coerce_time("end_time", patch["end_time"])
    status = None
    if patch.get("status") is not None:
        status = _coerce_enum(EventStatus, "status", patch["status"])
    fields = {key: patch[key] for key in OVERRIDE_FIELDS if key in patch}

    row = upsert_override(
        session,
        event,
        instance_date,
        now=now,
        start_time=start,
        end_time=end,
        status=status,
        fields=fields,
    )
    event.add_exception_date(instance_date)
    event.touch(now)
    session.flush()

    logger.info(
        "Updated occurrence %s of event %s (version %d)",
        instance_date,
        event.id,
        event.version,
    )
    return override_occurrence_view(event, row)


# ============================================================================
# DELETE
# ============================================================================


def _normalize_scope(scope: Optional[str]) -> Optional[str]:
    if scope is None or scope == "":
        return None
    value = str(scope).strip().lower()
    if value not in SCOPES:
        raise InvalidFieldError("scope", f"scope must be one of: {', '.join(SCOPES)}")
    return value


def delete_occurrence(
    session: Session,
    gate: AccessGate,
    user_id: str,
    target_id: str,
    scope: Optional[str] = None,
    *,
    now: datetime,
) -> str:
    """
    Delete an event, one occurrence, or the rest of a series.

    Args:
        target_id: Event ID, or {event_id}_{date} for one occurrence
        scope: "this", "future" or "all". An occurrence ID implies "this";
            a series ID implies "all". "this" on a series ID cancels the
            occurrence dated today.

    Returns:
        The scope that was applied

    Raises:
        EventNotFoundError: If the target does not exist
        InvalidFieldError: If the scope is not recognised
        PermissionDeniedError: If the user cannot write to the event
    """
    scope = _normalize_scope(scope)
    event, instance_date = resolve_target(session, target_id)
    check_event_write(gate, user_id, event)

    if scope is None:
        scope = SCOPE_THIS if instance_date is not None else SCOPE_ALL

    if event.recurrence_rule is None or scope == SCOPE_ALL:
        session.delete(event)
        session.flush()
        logger.info("Deleted event %s", event.id)
        return SCOPE_ALL

    if scope == SCOPE_THIS:
        target_date = instance_date or coerce_date(now)
        event.add_exception_date(target_date)
        removed = delete_override(session, event.id, target_date)
        event.touch(now)
        session.flush()
        logger.info(
            "Cancelled occurrence %s of event %s%s",
            target_date,
            event.id,
            " (override removed)" if removed else "",
        )
        return SCOPE_THIS

    last_date = yesterday(now)
    rule = event.recurrence_rule
    rule.apply_spec(truncate_rule(rule.to_spec(), event.start_utc, last_date))
    removed_count = delete_overrides_after(session, event.id, last_date)
    event.touch(now)
    session.flush()
    logger.info(
        "Truncated event %s after %s (%d overrides removed)",
        event.id,
        last_date,
        removed_count,
    )
    return SCOPE_FUTURE
