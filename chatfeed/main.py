"""chatfeed - application entry point.

FastAPI application factory for the live chat ingestion engine.

Entry Points:
    - /health - Health check endpoint
    - /ws/livechat - Local broadcast WebSocket (ChatMessage / ServerInfo / Pong)
    - /api/v1/livechat/* - Session control (start, status, mode switch, re-arm, close)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatfeed.core.config import get_settings
from chatfeed.core.exceptions import ConfigurationError, ServiceError
from chatfeed.core.http.errors import format_service_error, status_code_for
from chatfeed.core.logging import setup_logging
from chatfeed.core.streaming.hub import BroadcastHub
from chatfeed.features.livechat.config import get_livechat_config
from chatfeed.features.livechat.routes import router as livechat_router
from chatfeed.features.livechat.routes import websocket_router as livechat_websocket_router
from chatfeed.features.livechat.service import LiveChatService

setup_logging()

logger = logging.getLogger(__name__)


def create_app(service: Optional[LiveChatService] = None) -> FastAPI:
    """Application factory returning a configured FastAPI instance.

    ``service`` lets callers inject a pre-built service (tests do this to
    swap in fake HTTP transports); otherwise one is built from the
    environment at startup.
    """

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifespan - startup and shutdown events."""
        livechat_service = service
        if livechat_service is None:
            config = get_livechat_config()
            hub = BroadcastHub(queue_size=config.client_queue_size, version=settings.version)
            livechat_service = LiveChatService(config, hub)
        app.state.livechat_service = livechat_service
        logger.info("chatfeed %s ready", settings.version)
        yield
        logger.info("Application shutting down...")
        await livechat_service.aclose()
        await livechat_service.hub.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="chatfeed",
        description="Live chat ingestion and local broadcast server",
        version=settings.version,
        debug=settings.debug_mode,
        lifespan=lifespan,
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        """Return the structured error envelope for service failures."""

        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content=format_service_error(exc))

    @app.get("/health")
    async def health_check() -> dict[str, object]:
        livechat_service: Optional[LiveChatService] = getattr(app.state, "livechat_service", None)
        return {
            "status": "healthy",
            "version": settings.version,
            "sessions": len(livechat_service.list()) if livechat_service else 0,
            "connected_clients": livechat_service.hub.connected_clients if livechat_service else 0,
        }

    app.include_router(livechat_router)
    app.include_router(livechat_websocket_router)

    logger.debug("Application created with livechat routers")
    return app


def run() -> None:  # pragma: no cover - manual execution helper
    """Serve the app on the configured loopback address."""

    import uvicorn

    settings = get_settings()
    errors = settings.validate() + get_livechat_config().validate()
    if errors:
        raise ConfigurationError("; ".join(errors))
    uvicorn.run(create_app(), host=settings.broadcast_host, port=settings.broadcast_port)


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    run()
