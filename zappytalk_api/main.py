"""ZappyTalk gateway API - FastAPI application."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .auth import build_credential_verifier
from .config import get_settings
from .database import AGENTS_TABLE, OptionalDatabase
from .errors import register_exception_handlers
from .logging_config import get_logger, setup_logging
from .rate_limit import limiter
from .routes import agents_router, calls_router, users_router

logger = get_logger("zappytalk.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info(f"Starting ZappyTalk gateway (environment={settings.environment}, debug={settings.debug})")
    if settings.is_local:
        logger.warning("ENVIRONMENT=local: request authentication is DISABLED")
    yield
    logger.info("Shutting down ZappyTalk gateway")


settings = get_settings()
setup_logging(settings.log_level)

app = FastAPI(
    title="ZappyTalk Gateway API",
    description="Session dispatch, user profiles and call history for the ZappyTalk voice agent",
    version=__version__,
    lifespan=lifespan,
)

# The credential verifier is chosen once per process
app.state.credential_verifier = build_credential_verifier(settings)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex or None,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Include routers
app.include_router(agents_router)
app.include_router(users_router)
app.include_router(calls_router)


@app.get("/")
async def root():
    """Service banner."""
    return {
        "service": "zappytalk-gateway",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health(db: OptionalDatabase):
    """Health check with an actual database round trip."""
    if db is None:
        return {"status": "degraded", "database": "unconfigured"}

    db_status = "disconnected"
    try:
        await asyncio.to_thread(lambda: db.table(AGENTS_TABLE).select("name").limit(1).execute())
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {type(e).__name__}")
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
