"""
Application factory for the event series service.

Run with an ASGI server, e.g.:
    uvicorn event_platform.app:create_app --factory
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.routing import Router

from event_platform.config import Settings, load_settings
from event_platform.logging_config import setup_logging
from event_platform.middleware import PrincipalMiddleware
from event_platform.session import SessionManager, build_engine
from services.events.api.methods import routes as event_routes
from services.events.core.access import AccessGate


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_manager: Optional[SessionManager] = None,
    clock: Optional[Callable[[], datetime]] = None,
    gate_factory: Optional[Callable[[Session], AccessGate]] = None,
) -> Starlette:
    settings = settings or load_settings()
    setup_logging(settings.log_level, sql_echo=settings.sql_echo)

    if session_manager is None:
        engine = build_engine(settings.database_url, echo=settings.sql_echo)
        session_manager = SessionManager(engine)
    session_manager.create_schema()

    app = Starlette()
    app.state.settings = settings
    app.state.sessions = session_manager
    app.state.clock = clock
    app.state.gate_factory = gate_factory

    events_router = Router(
        routes=event_routes,
        middleware=[Middleware(PrincipalMiddleware, session_manager=session_manager)],
    )
    app.mount("/api/v1", events_router)

    return app
