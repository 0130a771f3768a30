"""Persistence for scan jobs, results, pull requests and watches.

Every method opens its own session so that coordinators running in detached
background tasks never share a session with the request that started them.

Job status only moves forward: pending -> running -> completed|failed, plus
pending -> failed when a job dies before it starts. Transitions are
conditional UPDATEs, so a terminal job can never be reopened.
"""

import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.notification import Notification
from app.models.pr_scan import PRScanJob, PRScanResult, SecuritySummary
from app.models.pull_request import PullRequest
from app.models.repository import Repository
from app.models.repository_watch import RepositoryWatch
from app.models.scan import ScanJob, ScanResult, VulnerabilityDetail
from app.models.user import User

logger = logging.getLogger(__name__)

JobModel = type[ScanJob] | type[PRScanJob]

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "running": ("pending",),
    "completed": ("running",),
    "failed": ("pending", "running"),
}

STALE_JOB_MESSAGE = "Job abandoned (no heartbeat)"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _vulnerability_row(scan_result_id: uuid.UUID, vulnerability: dict[str, Any]) -> VulnerabilityDetail:
    return VulnerabilityDetail(
        scan_result_id=scan_result_id,
        title=(vulnerability.get("title") or "Security Issue")[:255],
        description=vulnerability.get("description"),
        severity=vulnerability.get("severity") or "medium",
        category=vulnerability.get("category") or "general",
        cwe_id=vulnerability.get("cwe_id"),
        owasp_category=vulnerability.get("owasp_category"),
        confidence_score=vulnerability.get("confidence_score", 0.8),
        line_number=vulnerability.get("line_number"),
        starting_line=vulnerability.get("starting_line"),
        ending_line=vulnerability.get("ending_line"),
        code_snippet=vulnerability.get("code_snippet"),
        fix_suggestion=vulnerability.get("fix_suggestion"),
    )


class JobStore:
    """Scan job state store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # =========================================================================
    # Users and repositories
    # =========================================================================

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_repository(self, repository_id: uuid.UUID) -> Repository | None:
        async with self.session_factory() as session:
            return await session.get(Repository, repository_id)

    async def get_repository_for_user(
        self, user_id: uuid.UUID, repository_id: uuid.UUID
    ) -> Repository | None:
        """Repository the user owns or actively watches, else None."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Repository)
                .outerjoin(
                    RepositoryWatch,
                    (RepositoryWatch.repository_id == Repository.id)
                    & (RepositoryWatch.user_id == user_id)
                    & RepositoryWatch.is_active.is_(True),
                )
                .where(Repository.id == repository_id)
                .where(or_(Repository.user_id == user_id, RepositoryWatch.id.is_not(None)))
            )
            return result.scalars().first()

    async def get_repository_by_github_id(self, github_repo_id: int) -> Repository | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Repository).where(Repository.github_repo_id == github_repo_id)
            )
            return result.scalars().first()

    async def advance_watermark(self, repository_id: uuid.UUID, number: int) -> None:
        """Persist the highest processed PR number; never moves backwards."""
        async with self.session_factory() as session:
            await session.execute(
                update(Repository)
                .where(Repository.id == repository_id)
                .where(Repository.last_seen_pr_number < number)
                .values(last_seen_pr_number=number)
            )
            await session.commit()

    # =========================================================================
    # Job lifecycle (shared by full and PR scans)
    # =========================================================================

    async def transition(
        self,
        model: JobModel,
        job_id: uuid.UUID,
        status: str,
        error_message: str | None = None,
    ) -> bool:
        """Move a job to `status` if the current status allows it.

        Returns:
            True if the job changed, False if it was missing or already past
            that point in its lifecycle
        """
        now = utcnow()
        values: dict[str, Any] = {"status": status, "heartbeat_at": now}
        if status == "running":
            values["started_at"] = now
        else:
            values["completed_at"] = now
        if status == "completed":
            values["progress"] = 100
        if error_message is not None:
            values["error_message"] = error_message

        async with self.session_factory() as session:
            result = await session.execute(
                update(model)
                .where(model.id == job_id)
                .where(model.status.in_(ALLOWED_TRANSITIONS[status]))
                .values(**values)
            )
            await session.commit()

        if result.rowcount != 1:
            logger.warning("Refused %s transition to %s for job %s", model.__tablename__, status, job_id)
            return False
        return True

    async def update_progress(
        self, model: JobModel, job_id: uuid.UUID, progress: int, **extra: Any
    ) -> None:
        """Record progress and heartbeat on a running job."""
        async with self.session_factory() as session:
            await session.execute(
                update(model)
                .where(model.id == job_id)
                .where(model.status == "running")
                .values(progress=max(0, min(100, progress)), heartbeat_at=utcnow(), **extra)
            )
            await session.commit()

    async def fail_stale_jobs(self, timeout_minutes: int) -> int:
        """Fail pending/running jobs whose heartbeat is older than the timeout."""
        cutoff = utcnow() - timedelta(minutes=timeout_minutes)
        failed = 0
        async with self.session_factory() as session:
            for model in (ScanJob, PRScanJob):
                last_seen = model.heartbeat_at
                result = await session.execute(
                    update(model)
                    .where(model.status.in_(("pending", "running")))
                    .where(
                        or_(
                            last_seen < cutoff,
                            last_seen.is_(None) & (model.created_at < cutoff),
                        )
                    )
                    .values(status="failed", error_message=STALE_JOB_MESSAGE, completed_at=utcnow())
                )
                failed += result.rowcount or 0
            await session.commit()
        if failed:
            logger.warning("Marked %d stale scan jobs as failed", failed)
        return failed

    # =========================================================================
    # Full-repository scans
    # =========================================================================

    async def create_scan_job(self, **fields: Any) -> ScanJob:
        async with self.session_factory() as session:
            job = ScanJob(status="pending", heartbeat_at=utcnow(), **fields)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def get_scan_job(self, job_id: uuid.UUID) -> ScanJob | None:
        async with self.session_factory() as session:
            return await session.get(ScanJob, job_id)

    async def save_scan_results(self, job_id: uuid.UUID, rows: list[dict[str, Any]]) -> int:
        """Insert per-file results and their vulnerability rows in one transaction.

        Returns:
            Number of vulnerabilities stored
        """
        total = 0
        async with self.session_factory() as session:
            for row in rows:
                vulnerabilities = row.get("vulnerabilities") or []
                result = ScanResult(
                    scan_job_id=job_id,
                    file_path=row["file_path"],
                    file_content_hash=row.get("file_content_hash"),
                    vulnerabilities=vulnerabilities,
                    fixes=row.get("fixes") or [],
                    error=row.get("error"),
                    ai_analysis_metadata=row.get("ai_analysis_metadata") or {},
                )
                session.add(result)
                await session.flush()
                for vulnerability in vulnerabilities:
                    session.add(_vulnerability_row(result.id, vulnerability))
                total += len(vulnerabilities)

            await session.execute(
                update(ScanJob).where(ScanJob.id == job_id).values(total_vulnerabilities=total)
            )
            await session.commit()
        return total

    async def get_scan_results(self, job_id: uuid.UUID) -> list[ScanResult]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScanResult)
                .where(ScanResult.scan_job_id == job_id)
                .order_by(ScanResult.file_path)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Pull requests
    # =========================================================================

    async def get_pull_request(self, pull_request_id: uuid.UUID) -> PullRequest | None:
        async with self.session_factory() as session:
            return await session.get(PullRequest, pull_request_id)

    async def get_pull_request_for_user(
        self, user_id: uuid.UUID, pull_request_id: uuid.UUID
    ) -> tuple[PullRequest, Repository] | None:
        """Pull request and its repository, if the user can access the repository."""
        pull_request = await self.get_pull_request(pull_request_id)
        if pull_request is None:
            return None
        repository = await self.get_repository_for_user(user_id, pull_request.repository_id)
        if repository is None:
            return None
        return pull_request, repository

    async def upsert_pull_request(
        self, repository_id: uuid.UUID, fields: dict[str, Any]
    ) -> tuple[PullRequest, bool]:
        """Insert or update PR metadata keyed by (repository_id, number).

        Returns:
            (pull_request, created)
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(PullRequest)
                .where(PullRequest.repository_id == repository_id)
                .where(PullRequest.number == fields["number"])
            )
            pull_request = result.scalar_one_or_none()
            created = pull_request is None
            if created:
                pull_request = PullRequest(repository_id=repository_id, **fields)
                session.add(pull_request)
            else:
                for key, value in fields.items():
                    setattr(pull_request, key, value)
            await session.commit()
            await session.refresh(pull_request)
            return pull_request, created

    # =========================================================================
    # PR scans
    # =========================================================================

    async def create_pr_scan_job(self, **fields: Any) -> PRScanJob:
        async with self.session_factory() as session:
            job = PRScanJob(status="pending", heartbeat_at=utcnow(), **fields)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def get_pr_scan_job(self, job_id: uuid.UUID) -> PRScanJob | None:
        async with self.session_factory() as session:
            return await session.get(PRScanJob, job_id)

    async def save_pr_scan_results(
        self, job_id: uuid.UUID, rows: list[dict[str, Any]], summary_fields: dict[str, Any]
    ) -> SecuritySummary:
        """Insert per-file PR results and the job's security summary in one transaction."""
        async with self.session_factory() as session:
            for row in rows:
                session.add(PRScanResult(pr_scan_job_id=job_id, **row))
            summary = SecuritySummary(pr_scan_job_id=job_id, **summary_fields)
            session.add(summary)
            await session.commit()
            await session.refresh(summary)
            return summary

    async def get_pr_scan_results(self, job_id: uuid.UUID) -> list[PRScanResult]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PRScanResult)
                .where(PRScanResult.pr_scan_job_id == job_id)
                .order_by(PRScanResult.file_path)
            )
            return list(result.scalars().all())

    async def get_security_summary(self, job_id: uuid.UUID) -> SecuritySummary | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SecuritySummary).where(SecuritySummary.pr_scan_job_id == job_id)
            )
            return result.scalar_one_or_none()

    async def get_latest_security_summary(
        self, pull_request_id: uuid.UUID
    ) -> tuple[SecuritySummary, PRScanJob] | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SecuritySummary, PRScanJob)
                .join(PRScanJob, SecuritySummary.pr_scan_job_id == PRScanJob.id)
                .where(PRScanJob.pull_request_id == pull_request_id)
                .order_by(PRScanJob.created_at.desc(), SecuritySummary.created_at.desc())
                .limit(1)
            )
            row = result.first()
            return (row[0], row[1]) if row else None

    # =========================================================================
    # Watches and notifications
    # =========================================================================

    async def list_active_watches(self, repository_id: uuid.UUID) -> list[RepositoryWatch]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepositoryWatch)
                .where(RepositoryWatch.repository_id == repository_id)
                .where(RepositoryWatch.is_active.is_(True))
                .order_by(RepositoryWatch.created_at)
            )
            return list(result.scalars().all())

    async def get_active_watch(
        self, user_id: uuid.UUID, repository_id: uuid.UUID
    ) -> RepositoryWatch | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepositoryWatch)
                .where(RepositoryWatch.user_id == user_id)
                .where(RepositoryWatch.repository_id == repository_id)
                .where(RepositoryWatch.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    async def list_active_watches_by_repository(
        self,
    ) -> list[tuple[Repository, list[RepositoryWatch]]]:
        """Active watches grouped by watched repository."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepositoryWatch, Repository)
                .join(Repository, RepositoryWatch.repository_id == Repository.id)
                .where(RepositoryWatch.is_active.is_(True))
                .order_by(Repository.full_name, RepositoryWatch.created_at)
            )
            grouped: OrderedDict[uuid.UUID, tuple[Repository, list[RepositoryWatch]]] = OrderedDict()
            for watch, repository in result.all():
                grouped.setdefault(repository.id, (repository, []))[1].append(watch)
            return list(grouped.values())

    async def add_notification(self, **fields: Any) -> Notification:
        async with self.session_factory() as session:
            notification = Notification(status="pending", **fields)
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
            return notification
