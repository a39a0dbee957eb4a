"""
Event Series API - Endpoint Handlers

This module implements the REST endpoints for recurring event series.
Uses Starlette for HTTP handling with SQLAlchemy for database operations.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Awaitable, Optional
from functools import wraps

logger = logging.getLogger(__name__)

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette import status

from sqlalchemy.orm import Session

from ..database import EventOperations, EventSchema, UNSET
from ..core.errors import (
    EventsAPIError,
    InternalError,
    RecurrenceParseError,
    RequiredFieldError,
    UnauthorizedError,
    ValidationError,
    handle_exception,
)
from ..core.recurrence import DEFAULT_MAX_INSTANCES, RecurrenceRuleSpec
from ..core.serializers import (
    serialize_event,
    serialize_occurrence,
    serialize_occurrence_list,
)
from ..core.utils import calendar_now, format_rfc3339, parse_rfc3339


# Request body keys (camelCase) to operation arguments
EVENT_BODY_FIELDS = {
    "calendarId": "calendar_id",
    "title": "title",
    "description": "description",
    "location": "location",
    "startTime": "start_time",
    "endTime": "end_time",
    "isAllDay": "is_all_day",
    "color": "color",
    "visibility": "visibility",
    "status": "status",
}

INSTANCE_BODY_FIELDS = {
    "title": "title",
    "description": "description",
    "location": "location",
    "color": "color",
    "startTime": "start_time",
    "endTime": "end_time",
    "status": "status",
}

RULE_BODY_KEY = "recurrenceRule"


# ============================================================================
# REQUEST UTILITIES
# ============================================================================


def _get_session(request: Request) -> Session:
    """
    Get the database session from request state.

    The PrincipalMiddleware sets request.state.db_session for the
    duration of the request.
    """
    session = getattr(request.state, "db_session", None)
    if session is None:
        raise UnauthorizedError("Missing database session")
    return session


def get_user_id(request: Request) -> str:
    """Extract the caller's user ID set by the PrincipalMiddleware."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None or str(user_id).strip() == "":
        raise UnauthorizedError("Missing user authentication")
    return str(user_id)


def get_operations(request: Request) -> EventOperations:
    """Build the operations facade for this request's session."""
    session = _get_session(request)
    app_state = request.app.state
    settings = getattr(app_state, "settings", None)
    gate_factory = getattr(app_state, "gate_factory", None)
    return EventOperations(
        session,
        gate=gate_factory(session) if gate_factory else None,
        clock=getattr(app_state, "clock", None) or calendar_now,
        max_instances=settings.max_instances if settings else DEFAULT_MAX_INSTANCES,
    )


async def get_request_body(request: Request) -> dict[str, Any]:
    """Parse JSON body from request, return empty dict if no body."""
    body = await request.body()
    if not body:
        return {}
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def get_query_params(request: Request) -> dict[str, str]:
    """Get all query parameters as a dictionary."""
    return dict(request.query_params)


def _map_fields(body: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    """Pick known camelCase keys from a body and rename them."""
    return {mapping[key]: value for key, value in body.items() if key in mapping}


def parse_rule_body(value: Any) -> Optional[RecurrenceRuleSpec | str]:
    """
    Accept a recurrence rule as text or as an object.

    Object form: {"frequency", "interval", "count", "until", "byDay"}.
    """
    if value is None or isinstance(value, str):
        return value
    if not isinstance(value, dict):
        raise RecurrenceParseError("rule must be a string or an object")

    try:
        until = value.get("until")
        by_day = value.get("byDay")
        interval = value.get("interval")
        return RecurrenceRuleSpec(
            frequency=str(value.get("frequency") or "").upper(),
            interval=int(interval) if interval is not None else 1,
            count=int(value["count"]) if value.get("count") is not None else None,
            until=parse_rfc3339(until) if until else None,
            by_day=tuple(str(day).upper() for day in by_day) if by_day else None,
        ).validate()
    except (ValueError, TypeError) as exc:
        raise RecurrenceParseError(str(exc))


def _required_window_param(params: dict[str, str], name: str):
    raw = params.get(name)
    if not raw:
        raise RequiredFieldError(name)
    try:
        return parse_rfc3339(raw)
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid datetime for {name}: {raw}", field=name)


def _serialize_result(result: Any) -> dict[str, Any]:
    if isinstance(result, EventSchema):
        return serialize_event(result)
    return serialize_occurrence(result)


# ============================================================================
# ERROR HANDLING WRAPPER
# ============================================================================


def api_handler(
    handler: Callable[[Request], Awaitable[Response]]
) -> Callable[[Request], Awaitable[Response]]:
    """
    Decorator that wraps API handlers with:
    - Error handling and conversion to JSON responses
    - Consistent response formatting

    The PrincipalMiddleware provides:
    - request.state.db_session: Database session for the request
    - request.state.user_id: Caller identity
    """

    @wraps(handler)
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except EventsAPIError as e:
            return handle_exception(e)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse(
                {
                    "error": {
                        "code": 400,
                        "message": "Invalid JSON in request body",
                        "errors": [
                            {
                                "domain": "global",
                                "reason": "parseError",
                                "message": "Invalid JSON",
                            }
                        ],
                    }
                },
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        except Exception as e:
            # Log full exception server-side; return a sanitized error
            logger.exception("Unhandled exception in events API: %s", e)
            return InternalError().to_response()

    return wrapper


# ============================================================================
# EVENT HANDLERS
# ============================================================================


@api_handler
async def events_list(request: Request) -> JSONResponse:
    """
    GET /events

    Returns the occurrences within a window.

    Query Parameters:
    - start: Window start (RFC3339, required)
    - end: Window end (RFC3339, required)
    - calendarIds: Comma-separated calendar IDs (default: all accessible)
    """
    user_id = get_user_id(request)
    params = get_query_params(request)

    start = _required_window_param(params, "start")
    end = _required_window_param(params, "end")
    raw_ids = params.get("calendarIds", "")
    calendar_ids = [value.strip() for value in raw_ids.split(",") if value.strip()]

    views = get_operations(request).list_occurrences(
        user_id, start, end, calendar_ids or None
    )
    return JSONResponse(
        content=serialize_occurrence_list(views, start, end),
        status_code=status.HTTP_200_OK,
    )


@api_handler
async def events_insert(request: Request) -> JSONResponse:
    """
    POST /events

    Creates an event, recurring when the body carries recurrenceRule.
    """
    user_id = get_user_id(request)
    body = await get_request_body(request)

    fields = _map_fields(body, EVENT_BODY_FIELDS)
    rule = parse_rule_body(body.get(RULE_BODY_KEY))

    event = get_operations(request).create_series(user_id, rule=rule, **fields)
    return JSONResponse(
        content=serialize_event(event),
        status_code=status.HTTP_201_CREATED,
    )


@api_handler
async def events_get(request: Request) -> JSONResponse:
    """
    GET /events/{eventId}

    Returns an event, or one occurrence when eventId has the
    {eventId}_{YYYY-MM-DD} form.
    """
    user_id = get_user_id(request)
    event_id = request.path_params["eventId"]

    result = get_operations(request).get_event(user_id, event_id)
    return JSONResponse(
        content=_serialize_result(result),
        status_code=status.HTTP_200_OK,
    )


@api_handler
async def events_patch(request: Request) -> JSONResponse:
    """
    PATCH /events/{eventId}

    Updates a whole series. An explicit "recurrenceRule": null removes
    the rule; omitting the key leaves it unchanged.
    """
    user_id = get_user_id(request)
    event_id = request.path_params["eventId"]
    body = await get_request_body(request)

    patch = _map_fields(body, EVENT_BODY_FIELDS)
    patch.pop("calendar_id", None)
    rule = parse_rule_body(body[RULE_BODY_KEY]) if RULE_BODY_KEY in body else UNSET

    event = get_operations(request).update_series(user_id, event_id, patch, rule)
    return JSONResponse(
        content=serialize_event(event),
        status_code=status.HTTP_200_OK,
    )


@api_handler
async def events_update_instance(request: Request) -> JSONResponse:
    """
    PATCH /events/{eventId}/instance/{instanceDate}

    Edits one occurrence of a series.
    """
    user_id = get_user_id(request)
    event_id = request.path_params["eventId"]
    instance_date = request.path_params["instanceDate"]
    body = await get_request_body(request)

    patch = _map_fields(body, INSTANCE_BODY_FIELDS)
    view = get_operations(request).update_instance(
        user_id, event_id, instance_date, patch
    )
    return JSONResponse(
        content=serialize_occurrence(view),
        status_code=status.HTTP_200_OK,
    )


@api_handler
async def events_delete(request: Request) -> Response:
    """
    DELETE /events/{eventId}

    Query Parameters:
    - scope: this, future or all ("recurring" is accepted as an alias)
    """
    user_id = get_user_id(request)
    event_id = request.path_params["eventId"]
    params = get_query_params(request)
    scope = params.get("scope") or params.get("recurring")

    get_operations(request).delete_occurrence(user_id, event_id, scope)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse(
        {
            "status": "healthy",
            "service": "event-series",
            "time": format_rfc3339(calendar_now()),
        }
    )


# ============================================================================
# DISPATCH HANDLERS
# ============================================================================


def _method_not_allowed(method: str) -> JSONResponse:
    return JSONResponse(
        {
            "error": {
                "code": 405,
                "message": "Method not allowed",
                "errors": [
                    {
                        "domain": "global",
                        "reason": "methodNotAllowed",
                        "message": f"Method {method} not allowed",
                    }
                ],
            }
        },
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
    )


async def events_handler(request: Request) -> Response:
    """
    Dispatch handler for /events
    Routes to appropriate handler based on HTTP method.
    """
    method = request.method
    if method == "GET":
        return await events_list(request)
    elif method == "POST":
        return await events_insert(request)
    return _method_not_allowed(method)


async def event_by_id_handler(request: Request) -> Response:
    """
    Dispatch handler for /events/{eventId}
    Routes to appropriate handler based on HTTP method.
    """
    method = request.method
    if method == "GET":
        return await events_get(request)
    elif method == "PATCH":
        return await events_patch(request)
    elif method == "DELETE":
        return await events_delete(request)
    return _method_not_allowed(method)


# ============================================================================
# ROUTES
# ============================================================================


event_routes = [
    # GET/POST /events
    Route("/events", events_handler, methods=["GET", "POST"]),
    # GET/PATCH/DELETE /events/{eventId}
    Route(
        "/events/{eventId}",
        event_by_id_handler,
        methods=["GET", "PATCH", "DELETE"],
    ),
    # PATCH /events/{eventId}/instance/{instanceDate}
    Route(
        "/events/{eventId}/instance/{instanceDate}",
        events_update_instance,
        methods=["PATCH"],
    ),
]

routes = [
    Route("/health", health_check, methods=["GET"]),
    *event_routes,
]
