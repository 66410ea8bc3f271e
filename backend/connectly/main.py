"""Connectly Backend Application.

Main entry point for the real-time chat synchronization service.

Modules:
    - auth: Bearer token verification shared by HTTP and WebSocket
    - chat: Durable chats and messages, the message lifecycle, HTTP routes
    - realtime: Rooms, presence, typing relay and the WebSocket endpoint
    - users: User search

Run with ``uvicorn connectly.main:app``.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from connectly.chat.router import router as chat_router
from connectly.config import AppConfig, get_config
from connectly.engine import Engine, build_engine
from connectly.realtime.router import router as realtime_router
from connectly.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "duckdb",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = app.state.engine.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in connectly.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    app.state.engine.close()
    logger.info("Application shutdown complete")


def create_app(
    config: Optional[AppConfig] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """Build the FastAPI application around one engine.

    Args:
        config: Configuration to use (process-wide config by default).
        engine: Pre-built engine; built from ``config`` when omitted.
    """
    if engine is None:
        engine = build_engine(config or get_config())

    app = FastAPI(
        title="Connectly API",
        description="Real-time one-to-one chat synchronization backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=engine.config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(chat_router)
    app.include_router(users_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
