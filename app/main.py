"""
FastAPI Application Entry Point.
Initializes the FastAPI app with logging, middleware, CORS, routes and the retention scheduler.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.core.cache import cache
from app.core.database import engine, ping_database
from app.core.scheduler import retention_scheduler
from app.core.websocket import connection_manager

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    await cache.connect()
    if settings.retention_sweep_enabled:
        retention_scheduler.start()
    yield
    # Shutdown
    await retention_scheduler.stop()
    await cache.disconnect()
    await engine.dispose()


# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


# Initialize FastAPI application
app = FastAPI(
    title="Messaging Deletion Service",
    description="Message visibility and deletion subsystem of the messaging backend",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter state and error handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# CORS Middleware
# WebSocket CORS is handled by Socket.IO itself (cors_allowed_origins)
cors_origins = settings.get_allowed_origins_list()
logger.info(f"CORS allowed origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check Endpoints
@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "environment": settings.environment,
        }
    )


@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness check endpoint.
    Verifies database and cache connectivity; the scheduler state is informational.
    """
    database_ok = await ping_database()
    redis_state = await cache.ping() if settings.redis_url else "not_configured"
    ready = database_ok and redis_state in (True, "not_configured")

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not ready",
            "checks": {
                "database": database_ok,
                "redis": redis_state,
                "retention_scheduler": retention_scheduler.is_running,
            },
        }
    )


@app.get("/health/websocket", tags=["Health"])
async def websocket_health_check():
    """Connected session and user counts on this worker."""
    return {
        "status": "healthy",
        "connections": len(connection_manager.connections),
        "online_users": len(connection_manager.user_sessions),
    }


# Include API routers
from app.api.v1 import messages, conversations

app.include_router(
    messages.router,
    prefix="/api/v1/messages",
    tags=["Messages"]
)

app.include_router(
    conversations.router,
    prefix="/api/v1/conversations",
    tags=["Conversations"]
)

# Socket.IO wraps the FastAPI app: /socket.io/* goes to Socket.IO, everything else to FastAPI
fastapi_app = app

app = connection_manager.get_asgi_app(fastapi_app)
