"""Tests for the scan job store."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.models.pr_scan import PRScanJob
from app.models.scan import ScanJob
from app.services.github_service import pull_request_fields
from app.services.job_store import STALE_JOB_MESSAGE, utcnow


class TestPullRequestUpsert:
    """Test PR metadata upsert."""

    async def test_upsert_twice_keeps_one_row_with_latest_title(self, store, repository, make_pr_payload):
        """Same (repository, number) updates in place."""
        first, created_first = await store.upsert_pull_request(
            repository.id, pull_request_fields(make_pr_payload(12, title="Initial title"))
        )
        second, created_second = await store.upsert_pull_request(
            repository.id, pull_request_fields(make_pr_payload(12, title="Renamed title"))
        )

        assert created_first is True
        assert created_second is False
        assert first.id == second.id

        stored = await store.get_pull_request(first.id)
        assert stored.title == "Renamed title"

    async def test_same_number_in_other_repository_is_separate(
        self, store, session_factory, user, repository, make_pr_payload
    ):
        from app.models.repository import Repository

        async with session_factory() as session:
            other = Repository(
                user_id=user.id,
                github_repo_id=777,
                owner="org",
                name="other",
                full_name="org/other",
            )
            session.add(other)
            await session.commit()
            await session.refresh(other)

        a, _ = await store.upsert_pull_request(repository.id, pull_request_fields(make_pr_payload(1)))
        b, created = await store.upsert_pull_request(other.id, pull_request_fields(make_pr_payload(1)))

        assert created is True
        assert a.id != b.id


class TestTransitions:
    """Test forward-only job status transitions."""

    async def _job(self, store, user, repository):
        return await store.create_scan_job(
            repository_id=repository.id,
            user_id=user.id,
            scan_type="full",
            target_branch="main",
        )

    async def test_happy_path(self, store, user, repository):
        job = await self._job(store, user, repository)
        assert job.status == "pending"

        assert await store.transition(ScanJob, job.id, "running") is True
        running = await store.get_scan_job(job.id)
        assert running.status == "running"
        assert running.started_at is not None

        assert await store.transition(ScanJob, job.id, "completed") is True
        completed = await store.get_scan_job(job.id)
        assert completed.status == "completed"
        assert completed.progress == 100
        assert completed.completed_at is not None

    async def test_terminal_job_cannot_be_reopened(self, store, user, repository):
        job = await self._job(store, user, repository)
        await store.transition(ScanJob, job.id, "failed", error_message="boom")

        assert await store.transition(ScanJob, job.id, "running") is False
        assert await store.transition(ScanJob, job.id, "completed") is False

        stored = await store.get_scan_job(job.id)
        assert stored.status == "failed"
        assert stored.error_message == "boom"

    async def test_pending_cannot_complete_directly(self, store, user, repository):
        job = await self._job(store, user, repository)

        assert await store.transition(ScanJob, job.id, "completed") is False

    async def test_progress_only_moves_running_jobs(self, store, user, repository):
        job = await self._job(store, user, repository)

        await store.update_progress(ScanJob, job.id, 40)
        assert (await store.get_scan_job(job.id)).progress == 0

        await store.transition(ScanJob, job.id, "running")
        await store.update_progress(ScanJob, job.id, 40, total_files=5)
        stored = await store.get_scan_job(job.id)
        assert stored.progress == 40
        assert stored.total_files == 5


class TestStaleJobs:
    """Test recovery of jobs abandoned by a previous process."""

    async def test_old_heartbeat_fails_job(self, store, session_factory, user, repository, pull_request):
        stale = await store.create_scan_job(repository_id=repository.id, user_id=user.id)
        fresh = await store.create_scan_job(repository_id=repository.id, user_id=user.id)
        stale_pr = await store.create_pr_scan_job(
            user_id=user.id,
            repository_id=repository.id,
            pull_request_id=pull_request.id,
            pr_number=pull_request.number,
        )
        await store.transition(PRScanJob, stale_pr.id, "running")

        long_ago = utcnow() - timedelta(hours=2)
        async with session_factory() as session:
            for model, job_id in ((ScanJob, stale.id), (PRScanJob, stale_pr.id)):
                job = await session.get(model, job_id)
                job.heartbeat_at = long_ago
            await session.commit()

        failed = await store.fail_stale_jobs(timeout_minutes=30)

        assert failed == 2
        assert (await store.get_scan_job(stale.id)).status == "failed"
        assert (await store.get_scan_job(stale.id)).error_message == STALE_JOB_MESSAGE
        assert (await store.get_pr_scan_job(stale_pr.id)).status == "failed"
        assert (await store.get_scan_job(fresh.id)).status == "pending"


class TestRepositoryAccess:
    """Test owner-or-watcher repository access."""

    async def test_owner_has_access(self, store, user, repository):
        assert (await store.get_repository_for_user(user.id, repository.id)).id == repository.id

    async def test_watcher_has_access(self, store, session_factory, repository):
        from app.models.repository_watch import RepositoryWatch
        from app.models.user import User

        async with session_factory() as session:
            watcher = User(github_id=2002, github_login="watcher")
            stranger = User(github_id=3003, github_login="stranger")
            session.add_all([watcher, stranger])
            await session.flush()
            session.add(RepositoryWatch(user_id=watcher.id, repository_id=repository.id))
            await session.commit()
            watcher_id, stranger_id = watcher.id, stranger.id

        assert await store.get_repository_for_user(watcher_id, repository.id) is not None
        assert await store.get_repository_for_user(stranger_id, repository.id) is None


class TestWatermark:
    """Test persisted PR watermark."""

    async def test_watermark_never_moves_backwards(self, store, repository):
        await store.advance_watermark(repository.id, 9)
        await store.advance_watermark(repository.id, 4)

        assert (await store.get_repository(repository.id)).last_seen_pr_number == 9


class TestScanResults:
    """Test result persistence."""

    async def test_save_scan_results_counts_vulnerabilities(self, store, user, repository):
        job = await store.create_scan_job(repository_id=repository.id, user_id=user.id)
        rows = [
            {
                "file_path": "app.js",
                "vulnerabilities": [
                    {"title": "SQL Injection", "severity": "high", "category": "sql_injection", "line_number": 12},
                    {"title": "XSS", "severity": "medium", "category": "xss", "line_number": 20},
                ],
                "fixes": [],
            },
            {"file_path": "broken.js", "error": "AI analysis failed: timeout"},
        ]

        total = await store.save_scan_results(job.id, rows)

        assert total == 2
        assert (await store.get_scan_job(job.id)).total_vulnerabilities == 2
        results = await store.get_scan_results(job.id)
        assert [r.file_path for r in results] == ["app.js", "broken.js"]
        assert results[1].error == "AI analysis failed: timeout"
        assert results[1].vulnerabilities == []


class TestPRScanResults:
    """Test PR result and summary persistence."""

    async def _job(self, store, user, repository, pull_request):
        return await store.create_pr_scan_job(
            user_id=user.id,
            repository_id=repository.id,
            pull_request_id=pull_request.id,
            pr_number=pull_request.number,
        )

    def _row(self, path: str) -> dict:
        return {"file_path": path, "change_type": "modified", "vulnerabilities_added": []}

    async def test_results_and_summary_are_saved_together(self, store, user, repository, pull_request):
        job = await self._job(store, user, repository, pull_request)

        summary = await store.save_pr_scan_results(
            job.id,
            [self._row("a.py"), self._row("b.py")],
            {"score_before": 100, "score_after": 100, "recommendation": "approve"},
        )

        assert summary.recommendation == "approve"
        assert (await store.get_security_summary(job.id)).id == summary.id
        assert [r.file_path for r in await store.get_pr_scan_results(job.id)] == ["a.py", "b.py"]

    async def test_summary_failure_leaves_no_result_rows(self, store, user, repository, pull_request):
        job = await self._job(store, user, repository, pull_request)

        with pytest.raises(IntegrityError):
            await store.save_pr_scan_results(
                job.id,
                [self._row("a.py")],
                {"score_before": 100, "score_after": 100, "recommendation": None},
            )

        assert await store.get_pr_scan_results(job.id) == []
        assert await store.get_security_summary(job.id) is None
