# Access control for event series
# Pure role resolution plus the AccessGate collaborator interface

from enum import Enum as PyEnum
from typing import Any, Optional, Protocol

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from .errors import CalendarNotFoundError, PermissionDeniedError


class Role(PyEnum):
    """Capability of a user on a calendar or event."""

    owner = "owner"
    edit = "edit"
    creator = "creator"
    view = "view"
    none = "none"


WRITE_ROLES = frozenset({Role.owner, Role.edit, Role.creator})
READ_ROLES = WRITE_ROLES | {Role.view}

SHARE_ACCEPTED = "accepted"


def resolve_role(user_id: str, owner_id: str, share: Optional[Any]) -> Role:
    """
    Compute a user's calendar role from the owner and their share record.

    Only accepted shares grant access; `share` needs `permission` and
    `status` attributes.
    """
    if user_id == owner_id:
        return Role.owner
    if share is None or share.status != SHARE_ACCEPTED:
        return Role.none
    if share.permission == Role.edit.value:
        return Role.edit
    if share.permission == Role.view.value:
        return Role.view
    return Role.none


def effective_role(calendar_role: Role, created_by: Optional[str], user_id: str) -> Role:
    """Upgrade to `creator` when the user created the event."""
    if calendar_role in (Role.owner, Role.edit):
        return calendar_role
    if created_by is not None and created_by == user_id:
        return Role.creator
    return calendar_role


def require_write(role: Role, target: str) -> None:
    if role not in WRITE_ROLES:
        raise PermissionDeniedError(f"Permission denied for {target} (role: {role.value})")


def require_read(role: Role, target: str) -> None:
    if role not in READ_ROLES:
        raise PermissionDeniedError(f"Access denied to {target}")


class AccessGate(Protocol):
    """Resolves calendar roles; owned by the sharing collaborator."""

    def resolve_role(self, user_id: str, calendar_id: str) -> Role: ...

    def accessible_calendars(self, user_id: str) -> list[str]: ...


class ShareTableAccessGate:
    """AccessGate backed by the calendars and calendar_shares tables."""

    def __init__(self, session: Session):
        self.session = session

    def resolve_role(self, user_id: str, calendar_id: str) -> Role:
        from ..database.schema import Calendar, CalendarShare

        calendar = self.session.get(Calendar, calendar_id)
        if calendar is None:
            raise CalendarNotFoundError(calendar_id)

        share = self.session.execute(
            select(CalendarShare).where(
                and_(
                    CalendarShare.calendar_id == calendar_id,
                    CalendarShare.user_id == user_id,
                )
            )
        ).scalar_one_or_none()

        return resolve_role(user_id, calendar.owner_id, share)

    def accessible_calendars(self, user_id: str) -> list[str]:
        from ..database.schema import Calendar, CalendarShare

        owned = select(Calendar.id).where(Calendar.owner_id == user_id)
        shared = select(CalendarShare.calendar_id).where(
            and_(
                CalendarShare.user_id == user_id,
                CalendarShare.status == SHARE_ACCEPTED,
            )
        )
        ids = set(self.session.execute(owned).scalars())
        ids.update(self.session.execute(shared).scalars())
        return sorted(ids)
