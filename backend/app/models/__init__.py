"""SQLAlchemy models."""

from app.models.user import User
from app.models.repository import Repository
from app.models.scan import ScanJob, ScanResult, VulnerabilityDetail
from app.models.pull_request import PullRequest
from app.models.pr_scan import PRScanJob, PRScanResult, SecuritySummary
from app.models.repository_watch import RepositoryWatch
from app.models.notification import Notification

__all__ = [
    "User",
    "Repository",
    "ScanJob",
    "ScanResult",
    "VulnerabilityDetail",
    "PullRequest",
    "PRScanJob",
    "PRScanResult",
    "SecuritySummary",
    "RepositoryWatch",
    "Notification",
]
