"""Full-repository security scans."""

import asyncio
import hashlib
import logging
import os
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
    UpstreamNotFoundError,
    ValidationError,
)
from app.models.repository import Repository
from app.models.scan import ScanJob
from app.services.analysis_service import AnalysisService
from app.services.github_service import GitHubService
from app.services.job_store import JobStore
from app.services.normalization_service import VulnerabilityNormalizer
from app.tasks.runner import BackgroundRunner

logger = logging.getLogger(__name__)

SCAN_TYPES = ("full", "file")
FALLBACK_BRANCH = "master"

SUPPORTED_EXTENSIONS = frozenset({
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".php", ".rb", ".go", ".rs",
    ".cpp", ".c", ".cs", ".swift", ".kt", ".scala", ".sh", ".sql", ".html", ".css",
})

SKIP_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", "coverage", ".next",
    "vendor", "__pycache__", ".venv", "venv", "target",
})


@dataclass
class FileOutcome:
    """Result of scanning one file. Failures are data, not exceptions."""

    file_path: str
    vulnerabilities: list[dict[str, Any]] = field(default_factory=list)
    fixes: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    content_hash: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    rate_limited: bool = False

    def to_row(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "file_content_hash": self.content_hash,
            "vulnerabilities": self.vulnerabilities,
            "fixes": self.fixes,
            "error": self.error,
            "ai_analysis_metadata": self.metadata,
        }


def is_skipped_path(path: str) -> bool:
    return any(segment in SKIP_DIRS for segment in path.split("/"))


def is_supported_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in SUPPORTED_EXTENSIONS


def batched(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class ScanService:
    """Starts full-repository scans and runs them in the background."""

    def __init__(
        self,
        store: JobStore,
        github_service: GitHubService,
        analysis_service: AnalysisService,
        runner: BackgroundRunner,
        normalizer: VulnerabilityNormalizer | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.github_service = github_service
        self.analysis_service = analysis_service
        self.runner = runner
        self.normalizer = normalizer or VulnerabilityNormalizer()
        self.settings = settings or get_settings()

    # =========================================================================
    # Job creation
    # =========================================================================

    async def start_scan(
        self,
        requester_id: uuid.UUID,
        repository_id: uuid.UUID,
        scan_type: str = "full",
        target_branch: str | None = None,
        files_to_scan: list[str] | None = None,
        target_commit: str | None = None,
    ) -> dict[str, Any]:
        """Create a pending scan job and run it detached.

        Returns:
            {"scan_job_id": ..., "status": "started"}

        Raises:
            ValidationError: unknown scan type, or a file scan without files
            NotFoundOrForbiddenError: repository missing or not accessible
        """
        if scan_type not in SCAN_TYPES:
            raise ValidationError(f"Unsupported scan type: {scan_type}")
        files = [path.strip("/") for path in (files_to_scan or []) if path and path.strip("/")]
        if scan_type == "file" and not files:
            raise ValidationError("files_to_scan is required for file scans")

        repository = await self.store.get_repository_for_user(requester_id, repository_id)
        if repository is None:
            raise NotFoundOrForbiddenError("Repository not found")

        requester = await self.store.get_user(requester_id)
        if requester is None or not requester.github_access_token:
            raise ValidationError("GitHub account is not connected")

        job = await self.store.create_scan_job(
            repository_id=repository.id,
            user_id=requester_id,
            scan_type=scan_type,
            target_branch=target_branch or repository.default_branch,
            target_commit_sha=target_commit,
            files_to_scan=files,
        )
        logger.info("Created %s scan %s for %s", scan_type, job.id, repository.full_name)

        self._dispatch(job.id)
        return {"scan_job_id": job.id, "status": "started"}

    def _dispatch(self, job_id: uuid.UUID) -> None:
        if self.settings.task_backend == "celery":
            from app.tasks.scan_repo import scan_repository

            scan_repository.delay(str(job_id))
        else:
            self.runner.spawn(self.run_scan(job_id), name=f"scan-{job_id}")

    # =========================================================================
    # Background execution
    # =========================================================================

    async def run_scan(self, job_id: uuid.UUID) -> None:
        """Run a pending scan to completion or failure. Never raises."""
        try:
            job = await self.store.get_scan_job(job_id)
            if job is None:
                logger.error("Scan job %s not found", job_id)
                return
            if not await self.store.transition(ScanJob, job_id, "running"):
                return
            await self._execute(job)
        except Exception as exc:
            logger.exception("Scan %s failed: %s", job_id, exc)
            await self._mark_failed(job_id, str(exc))

    async def _mark_failed(self, job_id: uuid.UUID, message: str) -> None:
        try:
            await self.store.transition(ScanJob, job_id, "failed", error_message=message)
        except Exception:
            logger.exception("Could not record failure of scan %s", job_id)

    async def _execute(self, job: ScanJob) -> None:
        repository = await self.store.get_repository(job.repository_id)
        requester = await self.store.get_user(job.user_id)
        if repository is None:
            raise JobFatalError("Repository no longer exists")
        if requester is None or not requester.github_access_token:
            raise JobFatalError("GitHub account is not connected")
        token = requester.github_access_token

        branch = job.target_branch or repository.default_branch
        if job.scan_type == "file":
            files = list(job.files_to_scan or [])
        else:
            files, branch = await self.discover_files(token, repository, branch)
        ref = job.target_commit_sha or branch

        await self.store.update_progress(ScanJob, job.id, 0, total_files=len(files))
        logger.info("Scanning %d files of %s at %s", len(files), repository.full_name, ref)

        outcomes: list[FileOutcome] = []
        batches = batched(files, self.settings.scan_batch_size)
        for index, batch in enumerate(batches):
            results = await asyncio.gather(
                *[self._scan_file(token, repository.full_name, path, ref) for path in batch]
            )
            outcomes.extend(results)
            await self.store.update_progress(ScanJob, job.id, int(len(outcomes) * 100 / len(files)))

            if any(outcome.rate_limited for outcome in results) and index < len(batches) - 1:
                logger.warning(
                    "Rate limited during scan %s; backing off %.1fs",
                    job.id,
                    self.settings.rate_limit_backoff_seconds,
                )
                await asyncio.sleep(self.settings.rate_limit_backoff_seconds)

        try:
            total = await self.store.save_scan_results(job.id, [outcome.to_row() for outcome in outcomes])
        except SQLAlchemyError as exc:
            raise JobFatalError(f"Failed to store scan results: {exc}") from exc

        await self.store.transition(ScanJob, job.id, "completed")
        failed_files = sum(1 for outcome in outcomes if outcome.error)
        logger.info(
            "Scan %s completed: %d files, %d vulnerabilities, %d file errors",
            job.id,
            len(outcomes),
            total,
            failed_files,
        )

    async def _scan_file(self, token: str, full_name: str, path: str, ref: str) -> FileOutcome:
        """Fetch, analyze and normalize one file."""
        outcome = FileOutcome(file_path=path)
        try:
            content = await self.github_service.get_file_content(token, full_name, path, ref)
            outcome.content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()

            analysis = await self.analysis_service.analyze(content, path)
            vulnerabilities = self.normalizer.normalize_all(analysis.get("vulnerabilities", []), path)
            fixes = self.normalizer.normalize_fixes(analysis.get("fixes", []))
            self.normalizer.attach_fixes(vulnerabilities, fixes)

            outcome.vulnerabilities = [v.to_dict() for v in vulnerabilities]
            outcome.fixes = fixes
            outcome.metadata = analysis.get("metadata") or {}
        except RateLimitedError as exc:
            logger.warning("Rate limited fetching %s: %s", path, exc)
            outcome.error = str(exc)
            outcome.rate_limited = True
        except (UpstreamFetchError, AdapterError, ParseError) as exc:
            logger.warning("Failed to scan %s: %s", path, exc)
            outcome.error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error scanning %s", path)
            outcome.error = f"Unexpected error: {exc}"
        return outcome

    # =========================================================================
    # File discovery
    # =========================================================================

    async def discover_files(
        self, token: str, repository: Repository, branch: str
    ) -> tuple[list[str], str]:
        """Enumerate scannable files.

        Returns:
            (paths, effective_branch)
        """
        try:
            root = await self.github_service.list_directory(token, repository.full_name, "", branch)
        except UpstreamNotFoundError:
            if branch == FALLBACK_BRANCH:
                raise
            logger.info("Branch %s not found on %s; retrying on %s", branch, repository.full_name, FALLBACK_BRANCH)
            branch = FALLBACK_BRANCH
            root = await self.github_service.list_directory(token, repository.full_name, "", branch)

        files: list[str] = []
        pending_dirs: list[list[dict[str, Any]]] = [root]
        limit = self.settings.scan_max_files
        while pending_dirs and len(files) < limit:
            entries = pending_dirs.pop(0)
            for entry in entries:
                path = entry.get("path") or entry.get("name") or ""
                if entry.get("type") == "dir":
                    if is_skipped_path(path):
                        continue
                    try:
                        pending_dirs.append(
                            await self.github_service.list_directory(token, repository.full_name, path, branch)
                        )
                    except UpstreamFetchError as exc:
                        logger.warning("Skipping directory %s: %s", path, exc)
                elif entry.get("type") == "file":
                    if not is_supported_file(path) or is_skipped_path(path):
                        continue
                    if (entry.get("size") or 0) > self.settings.scan_max_file_size:
                        continue
                    files.append(path)
                    if len(files) >= limit:
                        break
        return files, branch

    # =========================================================================
    # Results
    # =========================================================================

    async def get_scan_results(self, requester_id: uuid.UUID, scan_job_id: uuid.UUID) -> dict[str, Any]:
        """Job plus its per-file results keyed by path (empty until completed)."""
        job = await self.store.get_scan_job(scan_job_id)
        if job is None:
            raise NotFoundOrForbiddenError("Scan job not found")
        if job.user_id != requester_id and not await self.store.get_repository_for_user(
            requester_id, job.repository_id
        ):
            raise NotFoundOrForbiddenError("Scan job not found")

        results = {}
        if job.status == "completed":
            results = {result.file_path: result for result in await self.store.get_scan_results(job.id)}
        return {"scan_job": job, "results": results}
