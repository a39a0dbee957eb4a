# Schema for the event series store
# Events own an optional recurrence rule, sparse overrides and cancelled dates

from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional
from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    UniqueConstraint,
    Index,
)
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.recurrence import RecurrenceRuleSpec
from ..core.utils import ensure_utc, to_storage
from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# ENUMS
# ============================================================================


class EventStatus(PyEnum):
    """Event status values."""

    confirmed = "confirmed"
    tentative = "tentative"
    cancelled = "cancelled"


class EventVisibility(PyEnum):
    """Event visibility levels."""

    default = "default"
    public = "public"
    private = "private"


# Fields an override may carry in exception_data
OVERRIDE_FIELDS = ("title", "description", "location", "color")


# ============================================================================
# CALENDARS (read by the default access gate)
# ============================================================================


class Calendar(Base):
    """A calendar owned by one user and optionally shared with others."""

    __tablename__ = "calendars"
    __table_args__ = (Index("ix_calendar_owner", "owner_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    events: Mapped[list["Event"]] = relationship(
        back_populates="calendar", cascade="all,delete-orphan"
    )
    shares: Mapped[list["CalendarShare"]] = relationship(
        back_populates="calendar", cascade="all,delete-orphan"
    )


class CalendarShare(Base):
    """A user's share on a calendar ("edit" or "view")."""

    __tablename__ = "calendar_shares"
    __table_args__ = (
        UniqueConstraint("calendar_id", "user_id", name="uq_calendar_share_user"),
        Index("ix_calendar_share_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    calendar_id: Mapped[str] = mapped_column(
        ForeignKey("calendars.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    permission: Mapped[str] = mapped_column(String(20), default="view", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    calendar: Mapped["Calendar"] = relationship(back_populates="shares")


# ============================================================================
# EVENTS
# ============================================================================


class Event(Base):
    """
    Event resource.

    A standalone event, or the anchor of a series when it owns a
    RecurrenceRule. exception_dates are the dates on which default
    expansion is suppressed (cancelled or overridden).
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_event_calendar", "calendar_id"),
        Index("ix_event_times", "start_time", "end_time"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    calendar_id: Mapped[str] = mapped_column(
        ForeignKey("calendars.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Stored as naive UTC
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_all_day: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0"
    )

    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    visibility: Mapped[EventVisibility] = mapped_column(
        Enum(EventVisibility, name="event_visibility_enum", native_enum=False),
        default=EventVisibility.default,
    )
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status_enum", native_enum=False),
        default=EventStatus.confirmed,
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    calendar: Mapped["Calendar"] = relationship(back_populates="events")
    recurrence_rule: Mapped[Optional["RecurrenceRule"]] = relationship(
        back_populates="event", cascade="all,delete-orphan", lazy="selectin"
    )
    instances: Mapped[list["EventInstance"]] = relationship(
        back_populates="event", cascade="all,delete-orphan"
    )
    exception_date_rows: Mapped[list["EventExceptionDate"]] = relationship(
        back_populates="event", cascade="all,delete-orphan", lazy="selectin"
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule is not None

    @property
    def calendar_name(self) -> Optional[str]:
        return self.calendar.name if self.calendar is not None else None

    @property
    def calendar_color(self) -> Optional[str]:
        return self.calendar.color if self.calendar is not None else None

    @property
    def start_utc(self) -> datetime:
        return ensure_utc(self.start_time)

    @property
    def end_utc(self) -> datetime:
        return ensure_utc(self.end_time)

    @property
    def exception_dates(self) -> frozenset[date]:
        return frozenset(row.exception_date for row in self.exception_date_rows)

    def has_exception_date(self, value: date) -> bool:
        return value in self.exception_dates

    def add_exception_date(self, value: date) -> bool:
        """Add a date to the set; returns False if it was already present."""
        if self.has_exception_date(value):
            return False
        self.exception_date_rows.append(EventExceptionDate(exception_date=value))
        return True

    def touch(self, now: datetime) -> None:
        """Record a successful mutation."""
        self.version = (self.version or 0) + 1
        self.updated_at = to_storage(now)


class RecurrenceRule(Base):
    """
    Recurrence rule of a series.

    Keyed by the owning event, so an event has at most one rule.
    """

    __tablename__ = "recurrence_rules"

    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    interval: Mapped[Optional[int]] = mapped_column(Integer, default=1, nullable=True)
    count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    by_day: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)

    event: Mapped["Event"] = relationship(back_populates="recurrence_rule")

    @property
    def rule_text(self) -> str:
        return self.to_spec().to_rule_text()

    def to_spec(self) -> RecurrenceRuleSpec:
        return RecurrenceRuleSpec(
            frequency=self.frequency,
            interval=self.interval if self.interval is not None else 1,
            count=self.count,
            until=ensure_utc(self.until) if self.until is not None else None,
            by_day=tuple(self.by_day) if self.by_day else None,
        )

    def apply_spec(self, spec: RecurrenceRuleSpec) -> None:
        self.frequency = spec.frequency
        self.interval = spec.interval
        self.count = spec.count
        self.until = to_storage(spec.until) if spec.until is not None else None
        self.by_day = list(spec.by_day) if spec.by_day else None

    @classmethod
    def from_spec(cls, spec: RecurrenceRuleSpec) -> "RecurrenceRule":
        rule = cls()
        rule.apply_spec(spec)
        return rule


class EventInstance(Base):
    """
    Override of one occurrence of a series.

    start_time/end_time of None mean "use the shifted series default";
    exception_data holds partial title/description/location/color overrides.
    """

    __tablename__ = "event_instances"
    __table_args__ = (
        UniqueConstraint("event_id", "instance_date", name="uq_event_instance_date"),
        Index("ix_event_instance_date", "instance_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    instance_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_exception: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="1"
    )
    exception_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    status: Mapped[Optional[EventStatus]] = mapped_column(
        Enum(EventStatus, name="event_status_enum", native_enum=False),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    event: Mapped["Event"] = relationship(back_populates="instances")


class EventExceptionDate(Base):
    """One date in an event's exception set."""

    __tablename__ = "event_exception_dates"

    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    exception_date: Mapped[date] = mapped_column(Date, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    event: Mapped["Event"] = relationship(back_populates="exception_date_rows")
