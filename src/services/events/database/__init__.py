# Database layer for the event series engine
from .base import Base
from .schema import (
    Calendar,
    CalendarShare,
    Event,
    EventExceptionDate,
    EventInstance,
    EventStatus,
    EventVisibility,
    RecurrenceRule,
)
from .pydantic_schemas import (
    EventInstanceSchema,
    EventSchema,
    OccurrenceView,
    RecurrenceRuleSchema,
)
from .mutations import SCOPE_ALL, SCOPE_FUTURE, SCOPE_THIS, SCOPES, UNSET
from .typed_operations import EventOperations

__all__ = [
    "Base",
    "Calendar",
    "CalendarShare",
    "Event",
    "EventExceptionDate",
    "EventInstance",
    "EventStatus",
    "EventVisibility",
    "RecurrenceRule",
    "EventInstanceSchema",
    "EventSchema",
    "OccurrenceView",
    "RecurrenceRuleSchema",
    "SCOPE_ALL",
    "SCOPE_FUTURE",
    "SCOPE_THIS",
    "SCOPES",
    "UNSET",
    "EventOperations",
]
