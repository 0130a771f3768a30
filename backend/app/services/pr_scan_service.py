"""Pull request diff scans.

A PR scan analyzes every non-deleted changed file with its patch, sorts the
findings into added/fixed/unchanged, scores the result and notifies the
requester's watch.
"""

import asyncio
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, get_settings
from app.exceptions import (
    AdapterError,
    JobFatalError,
    NotFoundOrForbiddenError,
    ParseError,
    RateLimitedError,
    UpstreamFetchError,
    ValidationError,
)
from app.models.pr_scan import PRScanJob
from app.services.analysis_service import AnalysisService
from app.services.github_service import GitHubService, pull_request_fields
from app.services.job_store import JobStore
from app.services.normalization_service import VulnerabilityNormalizer
from app.services.notification_service import NotificationService
from app.services.scan_service import batched
from app.services.scoring_service import FileBuckets, ScoringService
from app.tasks.runner import BackgroundRunner

logger = logging.getLogger(__name__)

PR_SCAN_TYPES = ("pr_diff",)
# GitHub reports deleted files as "removed"
DELETED_STATUSES = ("removed", "deleted")


@dataclass
class PRFileOutcome:
    """Diff analysis of one changed file."""

    file_path: str
    change_type: str
    added: list[dict[str, Any]] = field(default_factory=list)
    fixed: list[dict[str, Any]] = field(default_factory=list)
    unchanged: list[dict[str, Any]] = field(default_factory=list)
    fixes: list[dict[str, Any]] = field(default_factory=list)
    impact: dict[str, Any] = field(default_factory=dict)
    content_hash: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    # Skipped files are logged but not persisted or scored
    skipped: bool = False
    rate_limited: bool = False

    def to_row(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "change_type": self.change_type,
            "head_content_hash": self.content_hash,
            "vulnerabilities_added": self.added,
            "vulnerabilities_fixed": self.fixed,
            "vulnerabilities_unchanged": self.unchanged,
            "fixes": self.fixes,
            "security_impact": self.impact,
            "ai_analysis_metadata": self.metadata,
        }

    def buckets(self) -> FileBuckets:
        return FileBuckets(added=self.added, fixed=self.fixed, unchanged=self.unchanged)


class PRScanService:
    """Starts PR diff scans and runs them in the background."""

    def __init__(
        self,
        store: JobStore,
        github_service: GitHubService,
        analysis_service: AnalysisService,
        notification_service: NotificationService,
        runner: BackgroundRunner,
        normalizer: VulnerabilityNormalizer | None = None,
        scoring_service: ScoringService | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.github_service = github_service
        self.analysis_service = analysis_service
        self.notification_service = notification_service
        self.runner = runner
        self.normalizer = normalizer or VulnerabilityNormalizer()
        self.scoring_service = scoring_service or ScoringService()
        self.settings = settings or get_settings()

    # =========================================================================
    # Job creation
    # =========================================================================

    async def start_pr_scan(
        self,
        requester_id: uuid.UUID,
        pull_request_id: uuid.UUID,
        scan_type: str = "pr_diff",
    ) -> dict[str, Any]:
        """Create a pending PR scan job and run it detached.

        Upstream errors while listing the changed files propagate: no job is
        created for a PR whose diff cannot be read.

        Returns:
            {"pr_scan_job_id": ..., "status": "started"}
        """
        if scan_type not in PR_SCAN_TYPES:
            raise ValidationError(f"Unsupported PR scan type: {scan_type}")

        loaded = await self.store.get_pull_request_for_user(requester_id, pull_request_id)
        if loaded is None:
            raise NotFoundOrForbiddenError("Pull request not found")
        pull_request, repository = loaded

        requester = await self.store.get_user(requester_id)
        if requester is None or not requester.github_access_token:
            raise ValidationError("GitHub account is not connected")

        raw_files = await self.github_service.get_pull_request_files(
            requester.github_access_token, repository.full_name, pull_request.number
        )
        changed_files = [
            {
                "filename": f["filename"],
                "status": f.get("status", "modified"),
                "patch": f.get("patch") or "",
            }
            for f in raw_files
            if f.get("filename")
        ]

        job = await self.store.create_pr_scan_job(
            user_id=requester_id,
            repository_id=repository.id,
            pull_request_id=pull_request.id,
            pr_number=pull_request.number,
            scan_type=scan_type,
            base_commit_sha=pull_request.base_commit_sha,
            head_commit_sha=pull_request.head_commit_sha,
            files_changed=[f["filename"] for f in changed_files],
        )
        logger.info(
            "Created PR scan %s for %s#%d (%d files)",
            job.id,
            repository.full_name,
            pull_request.number,
            len(changed_files),
        )

        self._dispatch(job.id, changed_files)
        return {"pr_scan_job_id": job.id, "status": "started"}

    def _dispatch(self, job_id: uuid.UUID, changed_files: list[dict[str, Any]]) -> None:
        if self.settings.task_backend == "celery":
            from app.tasks.scan_pr import scan_pull_request

            scan_pull_request.delay(str(job_id), changed_files)
        else:
            self.runner.spawn(self.run_pr_scan(job_id, changed_files), name=f"pr-scan-{job_id}")

    # =========================================================================
    # Background execution
    # =========================================================================

    async def run_pr_scan(self, job_id: uuid.UUID, changed_files: list[dict[str, Any]]) -> None:
        """Run a pending PR scan to completion or failure. Never raises."""
        context: dict[str, Any] = {}
        try:
            job = await self.store.get_pr_scan_job(job_id)
            if job is None:
                logger.error("PR scan job %s not found", job_id)
                return
            if not await self.store.transition(PRScanJob, job_id, "running"):
                return
            context = await self._load_context(job)
            summary = await self._execute(job, context, changed_files)
        except Exception as exc:
            logger.exception("PR scan %s failed: %s", job_id, exc)
            try:
                await self.store.transition(PRScanJob, job_id, "failed", error_message=str(exc))
            except Exception:
                logger.exception("Could not record failure of PR scan %s", job_id)
            if context:
                await self._notify("failed", {**context, "error_message": str(exc)})
            return

        await self._notify("completed", {**context, "summary": summary})

    async def _load_context(self, job: PRScanJob) -> dict[str, Any]:
        pull_request = await self.store.get_pull_request(job.pull_request_id)
        repository = await self.store.get_repository(job.repository_id)
        if pull_request is None or repository is None:
            raise JobFatalError("Pull request no longer exists")
        return {
            "user_id": job.user_id,
            "repository": repository,
            "pull_request": pull_request,
            "pr_scan_job_id": job.id,
        }

    async def _execute(
        self,
        job: PRScanJob,
        context: dict[str, Any],
        changed_files: list[dict[str, Any]],
    ) -> dict[str, Any]:
        requester = await self.store.get_user(job.user_id)
        if requester is None or not requester.github_access_token:
            raise JobFatalError("GitHub account is not connected")
        token = requester.github_access_token
        repository = context["repository"]
        ref = context["pull_request"].head_branch

        frozen = set(job.files_changed or [])
        files = [
            f
            for f in changed_files
            if f["filename"] in frozen and f.get("status") not in DELETED_STATUSES
        ]

        outcomes: list[PRFileOutcome] = []
        done = 0
        batches = batched(files, self.settings.scan_batch_size)
        for index, batch in enumerate(batches):
            results = await asyncio.gather(
                *[self._scan_changed_file(token, repository.full_name, f, ref) for f in batch]
            )
            outcomes.extend(r for r in results if not r.skipped)
            done += len(batch)
            await self.store.update_progress(PRScanJob, job.id, int(done * 100 / len(files)))

            if any(r.rate_limited for r in results) and index < len(batches) - 1:
                await asyncio.sleep(self.settings.rate_limit_backoff_seconds)

        score = self.scoring_service.score(outcome.buckets() for outcome in outcomes)
        try:
            await self.store.save_pr_scan_results(
                job.id, [outcome.to_row() for outcome in outcomes], score.to_dict()
            )
        except SQLAlchemyError as exc:
            raise JobFatalError(f"Failed to store PR scan results: {exc}") from exc

        await self.store.transition(PRScanJob, job.id, "completed")
        logger.info(
            "PR scan %s completed: %d/%d files analyzed, recommendation %s",
            job.id,
            len(outcomes),
            len(files),
            score.recommendation,
        )
        return score.to_dict()

    async def _scan_changed_file(
        self, token: str, full_name: str, changed: dict[str, Any], ref: str
    ) -> PRFileOutcome:
        """Analyze one changed file. Failures come back as a skipped outcome."""
        path = changed["filename"]
        change_type = changed.get("status", "modified")
        try:
            content = await self.github_service.get_file_content(token, full_name, path, ref)
            analysis = await self.analysis_service.analyze_diff(content, path, changed.get("patch", ""))
        except RateLimitedError as exc:
            logger.warning("Rate limited fetching %s: %s", path, exc)
            return PRFileOutcome(path, change_type, skipped=True, rate_limited=True)
        except (UpstreamFetchError, AdapterError, ParseError) as exc:
            logger.warning("Skipping PR file %s: %s", path, exc)
            return PRFileOutcome(path, change_type, skipped=True)
        except Exception:
            logger.exception("Unexpected error scanning PR file %s", path)
            return PRFileOutcome(path, change_type, skipped=True)

        fixes = self.normalizer.normalize_fixes(analysis.get("fixes", []))
        buckets = {}
        for name in ("added", "fixed", "unchanged"):
            vulnerabilities = self.normalizer.normalize_all(analysis.get(f"vulnerabilities_{name}", []), path)
            self.normalizer.attach_fixes(vulnerabilities, fixes)
            buckets[name] = [v.to_dict() for v in vulnerabilities]

        return PRFileOutcome(
            file_path=path,
            change_type=change_type,
            added=buckets["added"],
            fixed=buckets["fixed"],
            unchanged=buckets["unchanged"],
            fixes=fixes,
            impact=analysis.get("impact") or {},
            content_hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
            metadata={**(analysis.get("metadata") or {}), "patch_analysis": True},
        )

    async def _notify(self, event: str, context: dict[str, Any]) -> None:
        try:
            await self.notification_service.notify(event, context)
        except Exception:
            logger.exception("Failed to dispatch %s notification for PR scan %s", event, context.get("pr_scan_job_id"))

    # =========================================================================
    # Queries
    # =========================================================================

    async def _get_accessible_job(self, requester_id: uuid.UUID, job_id: uuid.UUID) -> PRScanJob:
        job = await self.store.get_pr_scan_job(job_id)
        if job is None:
            raise NotFoundOrForbiddenError("PR scan job not found")
        if job.user_id != requester_id and not await self.store.get_repository_for_user(
            requester_id, job.repository_id
        ):
            raise NotFoundOrForbiddenError("PR scan job not found")
        return job

    async def get_pr_scan_results(self, requester_id: uuid.UUID, pr_scan_job_id: uuid.UUID) -> dict[str, Any]:
        """Job, per-file results keyed by path and the summary once completed."""
        job = await self._get_accessible_job(requester_id, pr_scan_job_id)
        results = {}
        summary = None
        if job.status == "completed":
            results = {r.file_path: r for r in await self.store.get_pr_scan_results(job.id)}
            summary = await self.store.get_security_summary(job.id)
        return {"pr_scan_job": job, "results": results, "security_summary": summary}

    async def get_security_summary(self, requester_id: uuid.UUID, pull_request_id: uuid.UUID) -> dict[str, Any]:
        """Latest security summary of a pull request."""
        loaded = await self.store.get_pull_request_for_user(requester_id, pull_request_id)
        if loaded is None:
            raise NotFoundOrForbiddenError("Pull request not found")
        latest = await self.store.get_latest_security_summary(pull_request_id)
        if latest is None:
            raise NotFoundOrForbiddenError("No completed scan for this pull request")
        summary, job = latest
        return {"security_summary": summary, "pr_scan_job": job}

    async def sync_pull_requests(self, requester_id: uuid.UUID, repository_id: uuid.UUID) -> dict[str, int]:
        """Pull PR metadata from GitHub into the store.

        Returns:
            {"prs_added": n, "prs_updated": m}
        """
        repository = await self.store.get_repository_for_user(requester_id, repository_id)
        if repository is None:
            raise NotFoundOrForbiddenError("Repository not found")
        requester = await self.store.get_user(requester_id)
        if requester is None or not requester.github_access_token:
            raise ValidationError("GitHub account is not connected")

        pulls = await self.github_service.list_pull_requests(
            requester.github_access_token, repository.full_name, state="all", per_page=100
        )
        added = updated = 0
        for data in pulls:
            _, created = await self.store.upsert_pull_request(repository.id, pull_request_fields(data))
            if created:
                added += 1
            else:
                updated += 1
        logger.info("Synced %s pull requests: %d added, %d updated", repository.full_name, added, updated)
        return {"prs_added": added, "prs_updated": updated}
