"""
Media cache server: resolves audio source ids to cached files and streams
them with byte-range support behind a local-network security gateway.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from constants import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    CORS_EXPOSED_HEADERS,
    CORS_PREFLIGHT_MAX_AGE,
)
from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.auth import AuthMiddleware
from middleware.errors import error_response
from middleware.host import HostValidationMiddleware
from middleware.origin import ALLOWED_ORIGIN_PATTERN, OriginPolicyMiddleware
from middleware.rate_limit import RateLimitMiddleware
from routers import audio, cache, library, search, stream
from services.media.exceptions import MediaError

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    set_startup_time()
    settings = container.settings()

    # Resolve (and publish) the auth token before serving anything
    container.auth_token()

    await container.resolver().startup()
    await container.eviction_service().start()

    logger.info("Media cache server started",
               mode=settings.effective_mode,
               cache_dir=settings.cache_dir,
               rate_limit=settings.rate_limit_enabled)
    yield

    # Shutdown
    await container.eviction_service().stop()
    await container.resolver().shutdown()
    await container.catalog_search().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Media Cache Server",
    version="1.0.0",
    description="Audio acquisition cache with range streaming",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(MediaError)
async def media_error_handler(request: Request, exc: MediaError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path,
                     status=exc.status_code, error=exc.message)
    return error_response(exc)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message}
    )


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", path=request.url.path,
                         error_type=type(e).__name__, error=str(e), exc_info=True)
            return ORJSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal server error"}
            )


# Middleware added last runs first: host -> rate limit -> origin gate -> CORS -> auth
app.add_middleware(CatchAllExceptionsMiddleware)
app.add_middleware(AuthMiddleware)

# Preflights and Access-Control-* headers for origins the gate let through
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=ALLOWED_ORIGIN_PATTERN.pattern,
    allow_methods=list(CORS_ALLOWED_METHODS),
    allow_headers=list(CORS_ALLOWED_HEADERS),
    expose_headers=list(CORS_EXPOSED_HEADERS),
    max_age=CORS_PREFLIGHT_MAX_AGE,
)
app.add_middleware(OriginPolicyMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(HostValidationMiddleware)

# Include routers
app.include_router(audio.router)
app.include_router(stream.router)
app.include_router(cache.router)
app.include_router(search.router)
app.include_router(library.router)


@app.get("/health")
async def health_check():
    """Liveness, uptime, audio mode and cache summary."""
    # Summarising the cache lists the directory; keep it off the event loop
    return await asyncio.to_thread(
        get_health_status,
        container.cache_store(),
        container.coordinator(),
        container.settings()
    )


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Media Cache Server",
               host=settings.host, port=settings.port, debug=settings.debug)
    # Single worker: download locks and rate limit counters are in-process
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log"] if settings.debug else None,
        workers=1
    )
