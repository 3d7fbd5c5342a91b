"""PaperHub billing — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paperhub.api.v1.auth import router as auth_router
from paperhub.api.v1.payments import router as payments_router
from paperhub.api.v1.subscriptions import router as subscriptions_router
from paperhub.api.v1.webhooks import router as webhooks_router
from paperhub.billing.rate_limit import RedisRateLimitStore, create_rate_limit_store
from paperhub.config import settings
from paperhub.services.jobs import start_background_jobs, stop_background_jobs

# Configure root logger so all paperhub.* loggers output to stderr.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the sweep and outbox loops, and clean up on shutdown."""
    tasks = start_background_jobs() if settings.background_jobs_enabled else []
    if not tasks:
        logger.info("Background jobs disabled")
    yield
    await stop_background_jobs(tasks)

    store = app.state.rate_limit_store
    if isinstance(store, RedisRateLimitStore):
        await store.close()

    from paperhub.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Mobile-money payments and subscription access for the PaperHub study platform.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Held on the app so tests and workers each get their own counters.
app.state.rate_limit_store = create_rate_limit_store(settings.rate_limit_backend, settings.redis_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(subscriptions_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
