"""FastAPI dependency injection for settings, database sessions, identity and Stripe."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenantry_core.state.database import get_engine, unit_of_work
from tenantry_core.state.repository import UserRepository

from tenantry_api.config import APISettings
from tenantry_api.security import TokenClaims
from tenantry_api.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> APISettings:
    """Return the settings the application was created with."""
    return request.app.state.settings


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Open the process-wide engine and bind a session factory to it."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Close every pooled connection.  Called from the lifespan shutdown."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Billing services open their own short transactions around Stripe calls
    and therefore take the factory instead of a request-scoped session.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def get_db_session(
    factory: SessionFactoryDep,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped ``AsyncSession``.

    The session commits on clean exit and rolls back on exception, so a
    service that raises after partial writes leaves nothing behind.
    """
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


async def get_current_claims(request: Request, factory: SessionFactoryDep) -> TokenClaims:
    """Return the claims stored by :class:`AuthenticationMiddleware`.

    The caller is mirrored into the local ``users`` table in its own short
    transaction, so every authenticated route can rely on the user row
    existing (checkout, for one, resolves the paying user by id).
    """
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    async with unit_of_work(factory) as session:
        await UserRepository(session).ensure(claims.sub, claims.email)
    return claims


ClaimsDep = Annotated[TokenClaims, Depends(get_current_claims)]

# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


def get_stripe_gateway(settings: SettingsDep) -> StripeGateway:
    """Return a :class:`StripeGateway` bound to the current settings."""
    return StripeGateway(settings)


GatewayDep = Annotated[StripeGateway, Depends(get_stripe_gateway)]
