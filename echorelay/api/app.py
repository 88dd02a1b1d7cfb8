"""
FastAPI application factory.

``create_app()`` assembles the application with CORS, error handlers,
the relay WebSocket route, observability routes, and the health endpoint.
The module-level ``app`` instance allows ``uvicorn echorelay.api.app:app --reload``.
"""

from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from echorelay import __version__
from echorelay.api import relay
from echorelay.api.middleware.error_handler import register_error_handlers
from echorelay.api.routes import sessions
from echorelay.core.config import Settings, get_settings
from echorelay.core.models import HealthResponse


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return a fully configured FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="EchoRelay",
        description="Real-time audio relay that echoes recorded units back to the sender.",
        version=__version__,
    )

    # -- Per-app session state --
    registry = relay.SessionRegistry()
    app.state.registry = registry
    app.state.dispatcher = relay.RelayDispatcher(registry, settings)

    # -- CORS --
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error handlers --
    register_error_handlers(app)

    # -- Health check (root-level, not under /api/v1) --
    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health() -> HealthResponse:
        return HealthResponse(version=__version__, timestamp=datetime.now(UTC))

    # -- REST routes --
    app.include_router(sessions.router, prefix="/api/v1")

    # -- WebSocket --
    app.add_api_websocket_route(settings.relay_path, relay.relay_ws)

    return app


app = create_app()
