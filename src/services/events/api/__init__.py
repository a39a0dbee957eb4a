# API endpoint handlers for the event series service
from .methods import (
    # Routes
    routes,
    event_routes,
    # Request utilities
    get_user_id,
    get_operations,
    get_request_body,
    get_query_params,
    parse_rule_body,
    # Handler wrapper
    api_handler,
    # Event handlers
    events_list,
    events_insert,
    events_get,
    events_patch,
    events_update_instance,
    events_delete,
    health_check,
)

__all__ = [
    "routes",
    "event_routes",
    "get_user_id",
    "get_operations",
    "get_request_body",
    "get_query_params",
    "parse_rule_body",
    "api_handler",
    "events_list",
    "events_insert",
    "events_get",
    "events_patch",
    "events_update_instance",
    "events_delete",
    "health_check",
]
