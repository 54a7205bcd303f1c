"""
Carpool Booking API - Main Application Entry Point

Ride posting and seat booking for a carpooling platform:
- Concurrency-safe seat reservation (optimistic locking on the ride version)
- Ride and booking status state machines
- Best-effort trip estimates from a mapping service, cached in Redis
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from carpool.api.middleware import RequestLoggingMiddleware
from carpool.api.router import api_router
from carpool.core.config import get_settings
from carpool.core.errors import register_exception_handlers
from carpool.core.logging import get_logger, setup_logging
from carpool.core.metrics import metrics_endpoint
from carpool.services.cache_service import RouteCache, connect_redis
from carpool.services.location_service import build_location_service

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Composition root: builds the route cache and mapping client, tears them down."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    route_cache = RouteCache(await connect_redis(), ttl=settings.ROUTE_CACHE_TTL)
    if not route_cache.enabled:
        logger.warning("redis_unavailable", message="Running without route cache")

    http_client = httpx.AsyncClient()
    app.state.route_cache = route_cache
    app.state.location_service = build_location_service(http_client, route_cache, settings)

    yield

    await http_client.aclose()
    await route_cache.close()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Carpool ride posting and seat booking API with concurrency-safe reservations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for Docker and load balancers."""
    route_cache = getattr(request.app.state, "route_cache", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": await route_cache.stats() if route_cache else {"status": "disabled"},
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
