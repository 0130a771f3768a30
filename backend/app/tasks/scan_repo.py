"""Full-repository scan task."""

import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.celery_app import celery_app
from app.config import get_settings
from app.services.analysis_service import AnalysisService
from app.services.github_service import GitHubService
from app.services.job_store import JobStore
from app.services.scan_service import ScanService
from app.tasks.runner import BackgroundRunner

logger = logging.getLogger(__name__)
settings = get_settings()


def create_task_engine() -> AsyncEngine:
    # Each asyncio.run() gets a fresh loop, so the API's engine cannot be reused
    return create_async_engine(settings.database_url, pool_pre_ping=True)


def get_async_session(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def scan_repository_async(scan_job_id: str) -> None:
    engine = create_task_engine()
    try:
        service = ScanService(
            JobStore(get_async_session(engine)),
            GitHubService(),
            AnalysisService(),
            BackgroundRunner(),
        )
        await service.run_scan(uuid.UUID(scan_job_id))
    finally:
        await engine.dispose()


@celery_app.task(bind=True)
def scan_repository(self, scan_job_id: str) -> None:
    """Celery task entrypoint for full scans.

    run_scan records its own failures on the job, so there is nothing to retry.
    """
    logger.info("Running scan %s (task %s)", scan_job_id, self.request.id)
    asyncio.run(scan_repository_async(scan_job_id))
