"""Tutorbook Booking API -- Main Application Entry Point

Creates the FastAPI application, configures logging and CORS, starts the
notifier dispatcher that drains the event outbox, and registers all API
route modules under the /api/v1 prefix.

Run with::

    uvicorn tutorbook.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutorbook.core.config import settings
from tutorbook.integrations.notifier.notifierClient import NotifierDispatcher

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Start the dispatcher that forwards domain events to the notifier.

    Shutdown:
      - Stop the dispatcher and dispose of the database engine.
    """
    dispatcher = NotifierDispatcher()
    await dispatcher.start()
    app.state.notifier_dispatcher = dispatcher

    yield

    await dispatcher.stop()

    from tutorbook.api.deps import engine

    await engine.dispose()


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and readiness probes."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------
# Each router defines its own prefix (/bookings, /payments, /stats); they
# are mounted under the shared /api/v1 prefix.
# ---------------------------------------------------------------------------

from tutorbook.api.routes import bookings, payments, stats  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(bookings.router, prefix=_prefix)
app.include_router(payments.router, prefix=_prefix)
app.include_router(stats.router, prefix=_prefix)
