# devbox/main.py
"""
devbox orchestrator - HTTP, WebSocket and SSE entry point
"""
import asyncio
import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

# Rate limiting
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from devbox import __version__
from devbox.core.config import settings
from devbox.core.logging import log


# ---------------------------------------------------------------------------
# LIFESPAN
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    log("SANDBOX", f"devbox starting (profile: {settings.kubernetes.profile}, namespace: {settings.kubernetes.namespace})")

    from devbox.db import connect_db, disconnect_db
    from devbox.sandbox import get_orchestrator

    await connect_db()

    orchestrator = get_orchestrator()
    sweeper = asyncio.create_task(orchestrator.registry.run_sweeper())

    yield

    log("SANDBOX", "Shutting down...")
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await orchestrator.shutdown()
    await disconnect_db()


# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------

app = FastAPI(
    title="devbox orchestrator",
    version=__version__,
    lifespan=lifespan,
)

# Monitoring
from devbox.lib.monitoring import register_monitoring
register_monitoring(app)

if settings.cors_origins == ["*"] and not settings.debug:
    log("API", "CORS allows all origins; set CORS_ORIGINS in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Default: 100 requests per minute per IP, configured via RATE_LIMIT
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# ---------------------------------------------------------------------------
# API ROUTES
# ---------------------------------------------------------------------------

from devbox.api import (
    health,
    containers,
    files,
    events,
)

app.include_router(health.router)
app.include_router(containers.router)
app.include_router(files.router)
app.include_router(events.router)


# ---------------------------------------------------------------------------
# RUN
# ---------------------------------------------------------------------------

def run():
    uvicorn.run("devbox.main:app", host="0.0.0.0", port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
