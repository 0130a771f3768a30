"""Full-repository scan routes."""

from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import CurrentUser, Scans, to_http_exception
from app.exceptions import ScanError
from app.schemas.scan import (
    FileScanResultResponse,
    ScanCreateRequest,
    ScanJobResponse,
    ScanResultsResponse,
    ScanStartedResponse,
)

router = APIRouter()


@router.post("", response_model=ScanStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_scan(request: ScanCreateRequest, user: CurrentUser, scans: Scans):
    """Start a scan. Returns as soon as the job exists; poll GET /{id} for progress."""
    try:
        started = await scans.start_scan(
            user.id,
            request.repository_id,
            scan_type=request.scan_type,
            target_branch=request.target_branch,
            files_to_scan=request.files_to_scan,
            target_commit=request.target_commit,
        )
    except ScanError as e:
        raise to_http_exception(e)
    return ScanStartedResponse(**started)


@router.get("/{scan_job_id}", response_model=ScanResultsResponse)
async def get_scan(scan_job_id: UUID, user: CurrentUser, scans: Scans):
    """Get scan status, and per-file results once completed."""
    try:
        found = await scans.get_scan_results(user.id, scan_job_id)
    except ScanError as e:
        raise to_http_exception(e)

    return ScanResultsResponse(
        scan_job=ScanJobResponse.model_validate(found["scan_job"]),
        results={
            path: FileScanResultResponse.model_validate(result)
            for path, result in found["results"].items()
        },
    )
