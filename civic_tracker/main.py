"""
Civic Tracker API - Main Application Entry Point
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
from slowapi.errors import RateLimitExceeded

from civic_tracker.api.v1.router import api_router
from civic_tracker.bootstrap import ensure_admin_user
from civic_tracker.core.config import settings
from civic_tracker.core.database import init_db
from civic_tracker.core.errors import register_exception_handlers
from civic_tracker.core.logging import RequestContextMiddleware, setup_logging
from civic_tracker.core.metrics import MetricsMiddleware
from civic_tracker.core.rate_limiter import RateLimitMiddleware, _rate_limit_handler, limiter
from civic_tracker.core.redis import close_redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown."""
    # Startup
    setup_logging()
    await init_db()
    await ensure_admin_user()
    yield
    # Shutdown
    await close_redis()


app = FastAPI(
    title="Civic Tracker",
    description="Citizen issue reporting with voting, a moderated status workflow and trending views",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.state.limiter = limiter
register_exception_handlers(app)
app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

# Middleware (last added runs first)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestContextMiddleware)

# Mount Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "civic-tracker"}


@app.get("/")
async def root():
    """Root endpoint with system information."""
    return {
        "service": "Civic Tracker API",
        "version": "1.0.0",
        "docs": "/api/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
