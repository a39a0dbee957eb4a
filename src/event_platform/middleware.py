from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from event_platform.session import SessionManager
from services.events.core.errors import InternalError, UnauthorizedError

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
PUBLIC_PATHS = ("/health",)


class PrincipalMiddleware(BaseHTTPMiddleware):
    """
    Attaches the caller identity and a database session to each request.

    The user ID is taken from the X-User-Id header set by the upstream
    gateway; requests without it are rejected with 401.
    """

    def __init__(self, app, *, session_manager: SessionManager):
        super().__init__(app)
        self.session_manager = session_manager

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.scope.get("path", "").rstrip("/")
        if path.endswith(PUBLIC_PATHS):
            return await call_next(request)

        user_id = (request.headers.get(USER_HEADER) or "").strip()
        if not user_id:
            return UnauthorizedError(f"Missing {USER_HEADER} header").to_response()

        try:
            with self.session_manager.with_session() as session:
                request.state.user_id = user_id
                request.state.db_session = session
                return await call_next(request)
        except Exception:
            logger.exception("Unhandled exception in PrincipalMiddleware")
            return InternalError().to_response()
