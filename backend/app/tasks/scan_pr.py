"""Pull request diff scan task."""

import asyncio
import logging
import uuid
from typing import Any

from app.celery_app import celery_app
from app.services.analysis_service import AnalysisService
from app.services.github_service import GitHubService
from app.services.job_store import JobStore
from app.services.notification_service import NotificationService
from app.services.pr_scan_service import PRScanService
from app.tasks.runner import BackgroundRunner
from app.tasks.scan_repo import create_task_engine, get_async_session

logger = logging.getLogger(__name__)


async def scan_pull_request_async(pr_scan_job_id: str, changed_files: list[dict[str, Any]]) -> None:
    engine = create_task_engine()
    try:
        store = JobStore(get_async_session(engine))
        service = PRScanService(
            store,
            GitHubService(),
            AnalysisService(),
            NotificationService(store),
            BackgroundRunner(),
        )
        await service.run_pr_scan(uuid.UUID(pr_scan_job_id), changed_files)
    finally:
        await engine.dispose()


@celery_app.task(bind=True)
def scan_pull_request(self, pr_scan_job_id: str, changed_files: list[dict[str, Any]]) -> None:
    """Celery task entrypoint for PR scans."""
    logger.info("Running PR scan %s (task %s)", pr_scan_job_id, self.request.id)
    asyncio.run(scan_pull_request_async(pr_scan_job_id, changed_files))
