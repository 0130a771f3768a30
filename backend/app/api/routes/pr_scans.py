"""Pull request scan routes."""

from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import CurrentUser, PRScans, to_http_exception
from app.exceptions import ScanError
from app.schemas.scan import (
    PRScanCreateRequest,
    PRScanJobResponse,
    PRScanResultResponse,
    PRScanResultsResponse,
    PRScanStartedResponse,
    PRSyncResponse,
    PullRequestSecurityResponse,
    SecuritySummaryResponse,
)

router = APIRouter()


@router.post(
    "/pull-requests/{pull_request_id}/scan",
    response_model=PRScanStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_pr_scan(
    pull_request_id: UUID,
    user: CurrentUser,
    pr_scans: PRScans,
    request: PRScanCreateRequest | None = None,
):
    """Start a diff scan of a pull request."""
    scan_type = request.scan_type if request else "pr_diff"
    try:
        started = await pr_scans.start_pr_scan(user.id, pull_request_id, scan_type=scan_type)
    except ScanError as e:
        raise to_http_exception(e)
    return PRScanStartedResponse(**started)


@router.get("/pr-scans/{pr_scan_job_id}", response_model=PRScanResultsResponse)
async def get_pr_scan(pr_scan_job_id: UUID, user: CurrentUser, pr_scans: PRScans):
    """Get PR scan status, and results and summary once completed."""
    try:
        found = await pr_scans.get_pr_scan_results(user.id, pr_scan_job_id)
    except ScanError as e:
        raise to_http_exception(e)

    summary = found["security_summary"]
    return PRScanResultsResponse(
        pr_scan_job=PRScanJobResponse.model_validate(found["pr_scan_job"]),
        results={
            path: PRScanResultResponse.model_validate(result)
            for path, result in found["results"].items()
        },
        security_summary=SecuritySummaryResponse.model_validate(summary) if summary else None,
    )


@router.get(
    "/pull-requests/{pull_request_id}/security-summary",
    response_model=PullRequestSecurityResponse,
)
async def get_security_summary(pull_request_id: UUID, user: CurrentUser, pr_scans: PRScans):
    """Security summary of the latest completed scan of a pull request."""
    try:
        found = await pr_scans.get_security_summary(user.id, pull_request_id)
    except ScanError as e:
        raise to_http_exception(e)

    return PullRequestSecurityResponse(
        security_summary=SecuritySummaryResponse.model_validate(found["security_summary"]),
        pr_scan_job=PRScanJobResponse.model_validate(found["pr_scan_job"]),
    )


@router.post("/repositories/{repository_id}/sync-prs", response_model=PRSyncResponse)
async def sync_pull_requests(repository_id: UUID, user: CurrentUser, pr_scans: PRScans):
    """Refresh stored pull request metadata from GitHub."""
    try:
        synced = await pr_scans.sync_pull_requests(user.id, repository_id)
    except ScanError as e:
        raise to_http_exception(e)
    return PRSyncResponse(**synced)
