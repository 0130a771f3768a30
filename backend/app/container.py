"""Process-wide service instances.

Scan jobs outlive the request that starts them, so the coordinators are
singletons built on the shared session factory rather than on a request's
session.
"""

from functools import lru_cache

from app.config import get_settings
from app.database import get_session_factory
from app.services.analysis_service import AnalysisService
from app.services.github_service import GitHubService
from app.services.job_store import JobStore
from app.services.notification_service import NotificationService
from app.services.pr_monitor_service import PRMonitorService
from app.services.pr_scan_service import PRScanService
from app.services.scan_service import ScanService
from app.tasks.runner import BackgroundRunner


@lru_cache
def get_runner() -> BackgroundRunner:
    return BackgroundRunner()


@lru_cache
def get_job_store() -> JobStore:
    return JobStore(get_session_factory())


@lru_cache
def get_github_service() -> GitHubService:
    return GitHubService()


@lru_cache
def get_analysis_service() -> AnalysisService:
    return AnalysisService()


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService(get_job_store())


@lru_cache
def get_scan_service() -> ScanService:
    return ScanService(
        get_job_store(),
        get_github_service(),
        get_analysis_service(),
        get_runner(),
        settings=get_settings(),
    )


@lru_cache
def get_pr_scan_service() -> PRScanService:
    return PRScanService(
        get_job_store(),
        get_github_service(),
        get_analysis_service(),
        get_notification_service(),
        get_runner(),
        settings=get_settings(),
    )


@lru_cache
def get_pr_monitor() -> PRMonitorService:
    return PRMonitorService(
        get_job_store(),
        get_github_service(),
        get_pr_scan_service(),
        get_notification_service(),
        settings=get_settings(),
    )
