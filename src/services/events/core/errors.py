# Event Series Error Handling
# Typed errors with JSON error envelopes

import logging
from typing import Any, Optional

from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================================
# ERROR REASONS
# ============================================================================

ERROR_NOT_FOUND = "notFound"
ERROR_INVALID = "invalid"
ERROR_REQUIRED = "required"
ERROR_FORBIDDEN = "forbidden"
ERROR_UNAUTHORIZED = "authError"
ERROR_INTERNAL = "internalError"
ERROR_BACKEND = "backendError"

# Event-specific error reasons
ERROR_CALENDAR_NOT_FOUND = "calendarNotFound"
ERROR_EVENT_NOT_FOUND = "eventNotFound"
ERROR_INSTANCE_NOT_FOUND = "instanceNotFound"
ERROR_NOT_RECURRING = "notRecurring"
ERROR_INVALID_RECURRENCE = "invalidRecurrence"
ERROR_OCCURRENCE_ADDRESS = "occurrenceAddress"

# Domain
ERROR_DOMAIN_GLOBAL = "global"
ERROR_DOMAIN_EVENTS = "events"


# ============================================================================
# EXCEPTION CLASSES
# ============================================================================


class EventsAPIError(Exception):
    """Base exception for event series errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        reason: str = ERROR_INVALID,
        domain: str = ERROR_DOMAIN_EVENTS,
        location: Optional[str] = None,
        location_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.domain = domain
        self.location = location
        self.location_type = location_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to an error response dict."""
        error_detail: dict[str, Any] = {
            "domain": self.domain,
            "reason": self.reason,
            "message": self.message,
        }
        if self.location:
            error_detail["location"] = self.location
        if self.location_type:
            error_detail["locationType"] = self.location_type

        return {
            "error": {
                "code": self.status_code,
                "message": self.message,
                "errors": [error_detail],
            }
        }

    def to_response(self) -> JSONResponse:
        """Convert to Starlette JSONResponse."""
        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status_code,
        )


class NotFoundError(EventsAPIError):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str = "Not Found",
        reason: str = ERROR_NOT_FOUND,
    ):
        super().__init__(
            message=message,
            status_code=404,
            reason=reason,
        )


class CalendarNotFoundError(NotFoundError):
    """Calendar not found."""

    def __init__(self, calendar_id: str):
        super().__init__(
            message=f"Calendar not found: {calendar_id}",
            reason=ERROR_CALENDAR_NOT_FOUND,
        )
        self.calendar_id = calendar_id


class EventNotFoundError(NotFoundError):
    """Event not found."""

    def __init__(self, event_id: str):
        super().__init__(
            message=f"Event not found: {event_id}",
            reason=ERROR_EVENT_NOT_FOUND,
        )
        self.event_id = event_id


class InstanceNotFoundError(NotFoundError):
    """No occurrence of the series on the requested date."""

    def __init__(self, occurrence_id: str):
        super().__init__(
            message=f"Event instance not found: {occurrence_id}",
            reason=ERROR_INSTANCE_NOT_FOUND,
        )
        self.occurrence_id = occurrence_id


class ValidationError(EventsAPIError):
    """Invalid request data (400)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        reason: str = ERROR_INVALID,
    ):
        location = field
        location_type = "parameter" if field else None
        super().__init__(
            message=message,
            status_code=400,
            reason=reason,
            location=location,
            location_type=location_type,
        )


class RequiredFieldError(ValidationError):
    """Required field missing (400)."""

    def __init__(self, field: str):
        super().__init__(
            message=f"Required field missing: {field}",
            field=field,
            reason=ERROR_REQUIRED,
        )


class InvalidFieldError(ValidationError):
    """Invalid field value (400)."""

    def __init__(self, field: str, message: Optional[str] = None):
        msg = message or f"Invalid value for field: {field}"
        super().__init__(
            message=msg,
            field=field,
            reason=ERROR_INVALID,
        )


class OccurrenceAddressError(ValidationError):
    """A series-level operation was addressed at a single occurrence."""

    def __init__(self, occurrence_id: str):
        super().__init__(
            message=(
                f"Cannot update recurring instance {occurrence_id} directly. "
                "Use the instance update instead"
            ),
            field="id",
            reason=ERROR_OCCURRENCE_ADDRESS,
        )


class RecurrenceParseError(ValidationError):
    """Malformed recurrence rule text (400)."""

    def __init__(self, message: str, rule_text: Optional[str] = None):
        super().__init__(
            message=f"Invalid recurrence rule: {message}",
            field="recurrenceRule",
            reason=ERROR_INVALID_RECURRENCE,
        )
        self.rule_text = rule_text


class NotRecurringError(EventsAPIError):
    """Instance-scoped operation on a non-recurring event (400)."""

    def __init__(self, event_id: str):
        super().__init__(
            message=f"Event is not recurring: {event_id}",
            status_code=400,
            reason=ERROR_NOT_RECURRING,
        )
        self.event_id = event_id


class PermissionDeniedError(EventsAPIError):
    """Role insufficient for the requested operation (403)."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=403,
            reason=ERROR_FORBIDDEN,
        )


class UnauthorizedError(EventsAPIError):
    """Unauthorized access (401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=401,
            reason=ERROR_UNAUTHORIZED,
            domain=ERROR_DOMAIN_GLOBAL,
        )


class StorageError(EventsAPIError):
    """Transaction failure; the unit of work was rolled back (500)."""

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(
            message=message,
            status_code=500,
            reason=ERROR_BACKEND,
            domain=ERROR_DOMAIN_GLOBAL,
        )


class InternalError(EventsAPIError):
    """Internal server error (500)."""

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(
            message=message,
            status_code=500,
            reason=ERROR_INTERNAL,
            domain=ERROR_DOMAIN_GLOBAL,
        )


# ============================================================================
# ERROR HANDLING UTILITIES
# ============================================================================


def handle_exception(exc: Exception) -> JSONResponse:
    """Convert an exception to a JSONResponse."""
    if isinstance(exc, EventsAPIError):
        return exc.to_response()

    logger.error("Unexpected exception: %s", exc, exc_info=True)

    return InternalError().to_response()
