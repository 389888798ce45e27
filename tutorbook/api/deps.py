"""
Shared FastAPI dependencies for the Tutorbook booking backend.

Provides the async database session dependency used by all route handlers
and the authentication dependency that turns a Bearer token into the
``Actor`` every service call receives.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tutorbook.core.config import settings
from tutorbook.events import bookingEvents
from tutorbook.services import auth_service
from tutorbook.services.bookingStateManager import Actor

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time. Each request gets its
# own ``AsyncSession`` through ``get_db``; one request is one transaction.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session.

    Commits when the handler returns and only then publishes the domain
    events recorded during the transaction. Any exception rolls the
    transaction back and discards its events.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            bookingEvents.discard_pending(session)
            raise
        else:
            bookingEvents.publish_pending(session)
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Annotated type alias for convenience
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> Actor:
    """Extract the acting user from the Bearer token.

    Raises 401 if the token is expired, tampered with, or lacks a valid
    subject and role.
    """
    try:
        return auth_service.actor_from_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
