"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import monitoring, pr_scans, scans, webhooks
from app.config import get_settings
from app.container import get_job_store, get_pr_monitor, get_runner
from app.database import init_db

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def recover_stale_jobs() -> int:
    """Fail jobs left pending/running by a previous process."""
    return await get_job_store().fail_stale_jobs(settings.stale_job_timeout_minutes)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    await recover_stale_jobs()
    monitor = get_pr_monitor()
    if settings.pr_monitor_enabled:
        await monitor.start()
    yield
    # Shutdown
    await monitor.stop()
    if get_runner().pending:
        logger.info("Abandoning %d in-flight background jobs", get_runner().pending)


app = FastAPI(
    title="Security Scan API",
    description="AI security scanning for repositories and pull requests",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(scans.router, prefix="/api/scans", tags=["Scans"])
app.include_router(pr_scans.router, prefix="/api", tags=["Pull Request Scans"])
app.include_router(monitoring.router, prefix="/api/monitoring", tags=["Monitoring"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}
