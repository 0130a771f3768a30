"""Polls watched repositories for new pull requests.

Each repository has a watermark: the highest PR number already handed to the
scanners. A PR above the watermark is new. The watermark is advanced, in
memory and in `repositories.last_seen_pr_number`, before any new PR is
processed, so a PR that keeps failing cannot be re-offered forever.
"""

import asyncio
import contextlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from app.config import Settings, get_settings
from app.models.repository import Repository
from app.models.repository_watch import RepositoryWatch
from app.services.github_service import GitHubService, pull_request_fields
from app.services.job_store import JobStore
from app.services.notification_service import NotificationService
from app.services.pr_scan_service import PRScanService

logger = logging.getLogger(__name__)


class PRMonitorService:
    """Watermark-based PR monitor. States: stopped, running."""

    def __init__(
        self,
        store: JobStore,
        github_service: GitHubService,
        pr_scan_service: PRScanService,
        notification_service: NotificationService,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.github_service = github_service
        self.pr_scan_service = pr_scan_service
        self.notification_service = notification_service
        self.interval = settings.pr_monitor_interval_seconds
        self.page_size = settings.pr_monitor_page_size
        self.watermarks: dict[uuid.UUID, int] = {}
        self._task: asyncio.Task | None = None
        self._next_check_at: datetime | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Start polling. Returns False if already running."""
        if self.is_running:
            logger.info("PR monitor is already running")
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="pr-monitor")
        logger.info("PR monitor started (every %.0f seconds)", self.interval)
        return True

    async def stop(self) -> bool:
        """Stop polling. Returns False if not running."""
        if not self.is_running:
            logger.info("PR monitor is not running")
            return False
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._next_check_at = None
        logger.info("PR monitor stopped")
        return True

    async def set_interval(self, seconds: float) -> None:
        """Change the polling interval, restarting the loop if it is running."""
        if seconds <= 0:
            raise ValueError("Polling interval must be positive")
        self.interval = seconds
        if self.is_running:
            await self.stop()
            await self.start()

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "interval_seconds": self.interval,
            "next_check_at": self._next_check_at if self.is_running else None,
            "watched_repositories": len(self.watermarks),
        }

    async def _run(self) -> None:
        # One tick at a time: the next sleep starts only after the tick returns
        while True:
            try:
                await self.check_for_new_prs()
            except Exception:
                logger.exception("PR monitor tick failed")
            self._next_check_at = datetime.now(timezone.utc) + timedelta(seconds=self.interval)
            await asyncio.sleep(self.interval)

    # =========================================================================
    # Polling
    # =========================================================================

    async def check_for_new_prs(self) -> int:
        """Run one tick over every watched repository.

        Returns:
            Number of new pull requests found
        """
        groups = await self.store.list_active_watches_by_repository()
        if not groups:
            logger.debug("No active repository watches")
            return 0

        found = 0
        for repository, watches in groups:
            try:
                found += await self.check_repository(repository, watches)
            except Exception:
                logger.exception("Failed to check %s for new pull requests", repository.full_name)
        return found

    async def check_repository(self, repository: Repository, watches: list[RepositoryWatch]) -> int:
        owner = await self.store.get_user(repository.user_id)
        if owner is None or not owner.github_access_token:
            logger.info("No GitHub token for %s; skipping", repository.full_name)
            return 0

        pulls = await self.github_service.list_open_pull_requests(
            owner.github_access_token, repository.full_name, per_page=self.page_size
        )
        watermark = self.watermarks.get(repository.id, repository.last_seen_pr_number or 0)
        new_pulls = sorted((p for p in pulls if p["number"] > watermark), key=lambda p: p["number"])
        highest = max([watermark, *(p["number"] for p in pulls)])

        self.watermarks[repository.id] = highest
        if highest > watermark:
            try:
                await self.store.advance_watermark(repository.id, highest)
            except Exception:
                logger.exception("Could not persist watermark for %s", repository.full_name)

        for data in new_pulls:
            try:
                await self._process_new_pull_request(repository, watches, data)
            except Exception:
                logger.exception("Failed to process %s#%s", repository.full_name, data.get("number"))

        if new_pulls:
            logger.info("Found %d new pull requests in %s", len(new_pulls), repository.full_name)
        return len(new_pulls)

    async def _process_new_pull_request(
        self,
        repository: Repository,
        watches: list[RepositoryWatch],
        data: dict[str, Any],
    ) -> None:
        pull_request, _ = await self.store.upsert_pull_request(repository.id, pull_request_fields(data))
        for watch in watches:
            if not (watch.scan_on_open and watch.email_notifications):
                continue
            await self._notify_and_scan(watch, repository, pull_request, notify=True)

    async def _notify_and_scan(self, watch, repository, pull_request, notify: bool) -> None:
        if notify:
            try:
                await self.notification_service.notify(
                    "opened",
                    {
                        "user_id": watch.user_id,
                        "repository": repository,
                        "pull_request": pull_request,
                        "watch": watch,
                    },
                )
            except Exception:
                logger.exception("Failed to queue PR opened notification for user %s", watch.user_id)
        try:
            await self.pr_scan_service.start_pr_scan(watch.user_id, pull_request.id)
        except Exception as exc:
            logger.warning(
                "Could not start scan of %s#%d for user %s: %s",
                repository.full_name,
                pull_request.number,
                watch.user_id,
                exc,
            )

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def handle_pull_request_event(
        self, action: str, repository: Repository, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a GitHub pull_request webhook delivery.

        opened scans for watches with scan_on_open, synchronize for
        scan_on_sync, and a merged close for scan_on_merge.
        """
        pull_request, _ = await self.store.upsert_pull_request(repository.id, pull_request_fields(data))

        if action == "opened":
            # Keep the poller from offering this PR again
            number = pull_request.number
            if number > self.watermarks.get(repository.id, repository.last_seen_pr_number or 0):
                self.watermarks[repository.id] = number
                await self.store.advance_watermark(repository.id, number)

        watches = await self.store.list_active_watches(repository.id)
        scans = 0
        for watch in watches:
            if action == "opened":
                wanted, notify = watch.scan_on_open, watch.email_notifications
            elif action == "synchronize":
                wanted, notify = watch.scan_on_sync, False
            elif action == "closed" and data.get("merged"):
                wanted, notify = watch.scan_on_merge, False
            else:
                wanted, notify = False, False
            if wanted:
                await self._notify_and_scan(watch, repository, pull_request, notify=notify)
                scans += 1

        return {"pull_request_id": str(pull_request.id), "scans_requested": scans}
