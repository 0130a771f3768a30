"""Scan request and response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# Full-repository scans
# =============================================================================


class ScanCreateRequest(BaseModel):
    """Request to scan a repository."""

    repository_id: UUID
    scan_type: str = "full"
    target_branch: str | None = None
    target_commit: str | None = Field(None, max_length=40)
    files_to_scan: list[str] | None = None


class ScanStartedResponse(BaseModel):
    scan_job_id: UUID
    status: str


class ScanJobResponse(BaseModel):
    """Scan job state, polled while the scan runs."""

    id: UUID
    repository_id: UUID
    scan_type: str
    target_branch: str | None
    target_commit_sha: str | None
    status: str
    progress: int
    total_files: int
    total_vulnerabilities: int
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class FileScanResultResponse(BaseModel):
    file_path: str
    file_content_hash: str | None
    vulnerabilities: list[dict[str, Any]]
    fixes: list[dict[str, Any]]
    error: str | None

    class Config:
        from_attributes = True


class ScanResultsResponse(BaseModel):
    """Scan job plus per-file results keyed by path."""

    scan_job: ScanJobResponse
    results: dict[str, FileScanResultResponse]


# =============================================================================
# Pull request scans
# =============================================================================


class PRScanCreateRequest(BaseModel):
    scan_type: str = "pr_diff"


class PRScanStartedResponse(BaseModel):
    pr_scan_job_id: UUID
    status: str


class PRScanJobResponse(BaseModel):
    id: UUID
    repository_id: UUID
    pull_request_id: UUID
    pr_number: int
    scan_type: str
    base_commit_sha: str | None
    head_commit_sha: str | None
    files_changed: list[str]
    status: str
    progress: int
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class PRScanResultResponse(BaseModel):
    file_path: str
    change_type: str
    vulnerabilities_added: list[dict[str, Any]]
    vulnerabilities_fixed: list[dict[str, Any]]
    vulnerabilities_unchanged: list[dict[str, Any]]
    fixes: list[dict[str, Any]]
    security_impact: dict[str, Any]

    class Config:
        from_attributes = True


class SecuritySummaryResponse(BaseModel):
    total_added: int
    total_fixed: int
    total_unchanged: int
    critical_added: int
    critical_fixed: int
    high_added: int
    high_fixed: int
    score_before: int
    score_after: int
    recommendation: str
    created_at: datetime | None

    class Config:
        from_attributes = True


class PRScanResultsResponse(BaseModel):
    pr_scan_job: PRScanJobResponse
    results: dict[str, PRScanResultResponse]
    security_summary: SecuritySummaryResponse | None


class PullRequestSecurityResponse(BaseModel):
    """Latest security summary of a pull request."""

    security_summary: SecuritySummaryResponse
    pr_scan_job: PRScanJobResponse


class PRSyncResponse(BaseModel):
    prs_added: int
    prs_updated: int


# =============================================================================
# Monitoring
# =============================================================================


class MonitorStatusResponse(BaseModel):
    is_running: bool
    interval_seconds: float
    next_check_at: datetime | None
    watched_repositories: int


class MonitorIntervalRequest(BaseModel):
    interval_seconds: float = Field(..., gt=0)
