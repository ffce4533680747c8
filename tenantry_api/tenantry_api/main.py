"""FastAPI application entry-point for the Tenantry API."""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import SecretStr

from tenantry_api import __version__
from tenantry_api.config import APISettings, PlatformEnv, load_api_settings
from tenantry_api.dependencies import dispose_engine, init_engine
from tenantry_api.error_handlers import register_error_handlers
from tenantry_api.middleware.auth import AuthenticationMiddleware
from tenantry_api.middleware.logging import RequestLoggingMiddleware
from tenantry_api.routers import billing, health, invitations, teams
from tenantry_api.security import TokenVerifier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start and stop the process-wide resources.

    Startup switches on JSON logging when configured, opens the database
    engine and, in dev or against SQLite, creates missing tables.  Schema
    changes elsewhere go through Alembic.  Shutdown disposes the engine.
    """
    settings: APISettings = app.state.settings

    if settings.structured_logging:
        from tenantry_api.middleware.json_formatter import configure_structured_logging

        configure_structured_logging()
        logger.info("Structured JSON logging enabled")

    engine = init_engine(settings)
    backend = engine.url.get_backend_name()
    logger.info("Database engine ready (backend=%s, env=%s)", backend, settings.platform_env.value)

    if settings.platform_env == PlatformEnv.DEV or backend == "sqlite":
        from tenantry_core.state.tables import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema created from ORM metadata (backend=%s)", backend)

    try:
        yield
    finally:
        await dispose_engine()
        logger.info("Database engine disposed")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def _build_verifier(settings: APISettings) -> TokenVerifier:
    """Token verifier for the configured secret.

    Outside dev an empty secret refuses to start.  In dev a random
    per-process secret is generated, so tokens do not survive a restart.
    """
    secret = settings.token_secret
    if not secret.get_secret_value():
        if settings.platform_env != PlatformEnv.DEV:
            raise RuntimeError(
                f"API_TOKEN_SECRET is required in {settings.platform_env.value} mode. Refusing to start."
            )
        logger.warning("API_TOKEN_SECRET is not set; using a random per-process secret (dev only)")
        secret = SecretStr(secrets.token_hex(32))
    return TokenVerifier(secret, issuer=settings.token_issuer, algorithm=settings.token_algorithm)


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="Tenantry API",
        description="Team invitations and Stripe subscription reconciliation.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -- Middleware (last added runs outermost) -------------------------------

    app.add_middleware(AuthenticationMiddleware, verifier=_build_verifier(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            "Accept",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(teams.router, prefix="/api/v1")
    app.include_router(invitations.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")

    # -- Exception handlers --------------------------------------------------

    register_error_handlers(app)

    return app


# Module-level application instance used by ``uvicorn tenantry_api.main:app``.
app = create_app()
