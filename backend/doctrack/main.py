from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .api import admin, analytics, share, tracking
from .config import settings
from .core.exceptions import register_exception_handlers
from .core.logging import configure_logging
from .core.rate_limit import limiter
from .database import Base, SessionLocal, engine
from .jobs import JobSupervisor
from .services.aggregator import ensure_global_row

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    # Create database tables
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_global_row(db)
    finally:
        db.close()

    supervisor = JobSupervisor()
    app.state.supervisor = supervisor
    if settings.SCHEDULER_ENABLED:
        supervisor.start()

    yield

    supervisor.shutdown()


# Initialize FastAPI app
app = FastAPI(
    title="Doctrack",
    description="Document sharing view-session telemetry and analytics",
    version="1.0.0",
    lifespan=lifespan
)

# Setup rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

register_exception_handlers(app)

# CORS middleware; the viewer is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(share.router)
app.include_router(tracking.router)
app.include_router(analytics.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "doctrack"}
