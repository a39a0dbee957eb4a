# Response Serializers for the event series API
# Converts events and occurrence views to camelCase JSON

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Sequence

from .utils import format_date, format_rfc3339


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def _to_camel_case(snake_str: str) -> str:
    """Convert snake_case to camelCase."""
    head, *rest = snake_str.split("_")
    return head + "".join(part.title() for part in rest)


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_rfc3339(value)
    if isinstance(value, date):
        return format_date(value)
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_value(item) for item in value]
    return value


def _camel_dict(data: dict[str, Any]) -> dict[str, Any]:
    return {_to_camel_case(key): _json_value(value) for key, value in data.items()}


# ============================================================================
# EVENT SERIALIZERS
# ============================================================================


def serialize_recurrence_rule(rule: Any) -> Optional[dict[str, Any]]:
    """Serialize a RecurrenceRuleSchema, or None."""
    if rule is None:
        return None
    result = _camel_dict(rule.model_dump(exclude_none=True))
    result.setdefault("interval", 1)
    return result


def serialize_event(event: Any) -> dict[str, Any]:
    """
    Serialize an EventSchema.

    Response format:
    {
        "id": "...",
        "calendarId": "...",
        "title": "...",
        "startTime": "2024-06-03T10:00:00Z",
        "endTime": "2024-06-03T11:00:00Z",
        "exceptionDates": ["2024-06-10"],
        "recurrenceRule": {"frequency": "WEEKLY", "byDay": ["MO"], ...},
        "version": 1,
        ...
    }
    """
    data = event.model_dump(exclude={"recurrence_rule"})
    result = _camel_dict(data)
    result["recurrenceRule"] = serialize_recurrence_rule(event.recurrence_rule)
    result["isRecurring"] = event.recurrence_rule is not None
    return result


def serialize_occurrence(view: Any) -> dict[str, Any]:
    """Serialize an OccurrenceView with camelCase keys."""
    return _camel_dict(view.model_dump())


def serialize_occurrence_list(
    views: Sequence[Any],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Serialize a window query result.

    Response format:
    {
        "items": [...],
        "count": 3,
        "start": "...",
        "end": "..."
    }
    """
    result: dict[str, Any] = {
        "items": [serialize_occurrence(view) for view in views],
        "count": len(views),
    }
    if start is not None:
        result["start"] = format_rfc3339(start)
    if end is not None:
        result["end"] = format_rfc3339(end)
    return result
