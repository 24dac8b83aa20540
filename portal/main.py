"""
Consultant Portal - Main FastAPI Application
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import os

from portal.config import settings
from portal.exceptions import PortalError
from portal.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from portal.store import build_store
from portal.api.v1 import (
    dashboard,
    bookings,
    chats,
    profile
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Tests install their own store before startup
    if getattr(app.state, "store", None) is None:
        app.state.store = build_store()

    yield

    # Shutdown
    logger.info("Shutting down...")
    remaining = app.state.store.active_subscriptions()
    if remaining:
        logger.warning(f"{remaining} live subscription(s) still open at shutdown")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Consultant portal: dashboard, booking requests, chat inbox and profile",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
    debug=settings.DEBUG
)

# Add rate limiter to app state
app.state.limiter = limiter
app.state.store = None
# Add custom rate limit exception handler
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# ============================================================================
# MIDDLEWARE
# ============================================================================

logger.info(f"CORS configured for origins: {settings.CORS_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,  # Specific origins (required for credentials)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Trusted Host Middleware (security)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.ALLOWED_HOSTS
)


# ============================================================================
# ROUTES
# ============================================================================

# Health check endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API status
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring
    """
    store = request.app.state.store
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "store": settings.STORE_BACKEND,
        "live_subscriptions": store.active_subscriptions() if store is not None else 0
    }


# Include API routers
app.include_router(
    dashboard.router,
    prefix=f"{settings.API_V1_PREFIX}/dashboard",
    tags=["Dashboard"]
)

app.include_router(
    bookings.router,
    prefix=f"{settings.API_V1_PREFIX}/bookings",
    tags=["Booking Requests"]
)

app.include_router(
    chats.router,
    prefix=f"{settings.API_V1_PREFIX}/chats",
    tags=["Chat Inbox"]
)

app.include_router(
    profile.router,
    prefix=f"{settings.API_V1_PREFIX}/profile",
    tags=["Profile"]
)


# ============================================================================
# STATIC FILES (profile photos)
# ============================================================================

# Mount static files directory for serving uploaded files
if os.path.exists(settings.UPLOAD_BASE_DIR):
    app.mount(settings.STATIC_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_BASE_DIR), name="static")
    logger.info(f"Static files mounted at {settings.STATIC_URL_PREFIX} from {settings.UPLOAD_BASE_DIR}")
else:
    logger.warning(f"Upload directory does not exist: {settings.UPLOAD_BASE_DIR}. Static file serving disabled.")


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """
    Portal errors carry their own status code and a user-facing message
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error,
            "message": exc.message
        }
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """
    Custom 404 handler
    """
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": "The requested resource was not found",
            "path": str(request.url)
        }
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    """
    Custom 500 handler
    """
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "portal.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
