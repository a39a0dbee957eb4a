from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..core.utils import ensure_utc
from .schema import EventStatus, EventVisibility


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class RecurrenceRuleSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    frequency: str
    interval: Optional[int] = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    by_day: Optional[list[str]] = None
    rule_text: str

    @field_validator("until")
    @classmethod
    def normalize_until(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)


class EventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    calendar_id: str
    calendar_name: Optional[str] = None
    calendar_color: Optional[str] = None
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    color: Optional[str] = None
    visibility: EventVisibility = EventVisibility.default
    status: EventStatus = EventStatus.confirmed
    created_by: str
    version: int = 1
    exception_dates: list[date] = []
    recurrence_rule: Optional[RecurrenceRuleSchema] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)

    @field_validator("exception_dates", mode="before")
    @classmethod
    def sort_exception_dates(cls, value: Any) -> Any:
        if isinstance(value, (set, frozenset)):
            return sorted(value)
        return value

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule is not None


class EventInstanceSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    instance_date: date
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_exception: bool = True
    exception_data: Optional[dict[str, Any]] = None
    status: Optional[EventStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)


class OccurrenceView(BaseModel):
    """
    One concrete occurrence as returned to callers.

    Carries the base event fields with any override fields merged in.
    Never persisted.
    """

    id: str
    original_event_id: str
    calendar_id: str
    calendar_name: Optional[str] = None
    calendar_color: Optional[str] = None
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    color: Optional[str] = None
    visibility: EventVisibility = EventVisibility.default
    status: EventStatus = EventStatus.confirmed
    created_by: str
    version: int = 1
    recurrence_rule: Optional[str] = None
    is_recurring_instance: bool = False
    is_exception: bool = False
    instance_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)
