"""API dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.container import get_pr_monitor, get_pr_scan_service, get_scan_service
from app.database import get_db
from app.exceptions import NotFoundOrForbiddenError, ScanError, UpstreamFetchError, ValidationError
from app.models.user import User
from app.services.auth_service import AuthService
from app.services.pr_monitor_service import PRMonitorService
from app.services.pr_scan_service import PRScanService
from app.services.scan_service import ScanService

# Security scheme
security = HTTPBearer()

# Type aliases for cleaner signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
Scans = Annotated[ScanService, Depends(get_scan_service)]
PRScans = Annotated[PRScanService, Depends(get_pr_scan_service)]
Monitor = Annotated[PRMonitorService, Depends(get_pr_monitor)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: DbSession,
) -> User:
    """Get the current authenticated user from JWT token."""
    user_id = AuthService().user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def to_http_exception(exc: ScanError) -> HTTPException:
    """Map a job-creation error onto an HTTP response."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundOrForbiddenError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UpstreamFetchError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"GitHub: {exc}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
