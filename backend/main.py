"""FastAPI application entry point.

Startup sequence: settings -> vault secret -> proxy transport -> DB (optional).
"""

import os
from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from backend.api.routes import router
from backend.core import database, vault
from backend.core.errors import ChatError, UpstreamError
from backend.core.log_setup import configure_logging
from backend.core.model_factory import ProxyTransport
from backend.core.settings import DEFAULT_VAULT_SECRET, Settings

load_dotenv()
configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_JSON", "").lower() in ("1", "true", "yes"),
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("startup.begin")

    settings = app.state.settings
    vault.configure(settings.vault_secret)
    if settings.vault_secret == DEFAULT_VAULT_SECRET:
        logger.warning("startup.default_vault_secret", hint="Set VAULT_SECRET in .env")

    app.state.proxy_transport = ProxyTransport.from_settings(settings)
    logger.info("startup.transport", proxied=app.state.proxy_transport is not None)

    if settings.database_url:
        database.init_db(settings.database_url)
        logger.info("startup.db_initialized")

    logger.info(
        "startup.complete",
        google_default_key=bool(settings.default_google_key),
        tools_enabled=settings.tools_enabled,
        max_steps=settings.max_steps,
    )
    yield

    if app.state.proxy_transport is not None:
        await app.state.proxy_transport.aclose()
    logger.info("shutdown.complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; tests pass their own Settings."""
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Chat Gateway API",
        description="Multi-provider streaming chat gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.proxy_transport = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("request.unhandled", path=request.url.path, error=str(exc))
        error = UpstreamError(str(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    app.include_router(router)
    return app


app = create_app()
