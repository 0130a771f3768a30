"""Tests for scan, PR scan, monitoring and webhook routes."""

import hashlib
import hmac
import json
import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_current_user
from app.container import (
    get_github_service,
    get_job_store,
    get_pr_monitor,
    get_pr_scan_service,
    get_scan_service,
)
from app.exceptions import NotFoundOrForbiddenError, UpstreamFetchError, ValidationError
from app.services.github_service import GitHubService

USER = SimpleNamespace(id=uuid.uuid4(), github_login="octocat")


def _scan_job(**overrides):
    data = dict(
        id=uuid.uuid4(),
        repository_id=uuid.uuid4(),
        scan_type="full",
        target_branch="main",
        target_commit_sha=None,
        status="completed",
        progress=100,
        total_files=1,
        total_vulnerabilities=1,
        error_message=None,
        started_at=datetime(2024, 5, 1, 10, 0),
        completed_at=datetime(2024, 5, 1, 10, 1),
        created_at=datetime(2024, 5, 1, 9, 59),
    )
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.fixture
def scan_service():
    service = MagicMock()
    service.start_scan = AsyncMock()
    service.get_scan_results = AsyncMock()
    return service


@pytest.fixture
def pr_scan_service():
    service = MagicMock()
    service.start_pr_scan = AsyncMock()
    service.get_pr_scan_results = AsyncMock()
    service.get_security_summary = AsyncMock()
    service.sync_pull_requests = AsyncMock()
    return service


@pytest.fixture
def monitor():
    service = MagicMock()
    service.start = AsyncMock(return_value=True)
    service.stop = AsyncMock(return_value=True)
    service.set_interval = AsyncMock()
    service.handle_pull_request_event = AsyncMock(return_value={"scans_requested": 1})
    service.get_status.return_value = {
        "is_running": True,
        "interval_seconds": 60.0,
        "next_check_at": None,
        "watched_repositories": 2,
    }
    return service


@pytest.fixture
def job_store():
    store = MagicMock()
    store.get_repository_by_github_id = AsyncMock()
    return store


@pytest.fixture
def app(scan_service, pr_scan_service, monitor, job_store):
    with patch("app.main.init_db", new_callable=AsyncMock), \
            patch("app.main.recover_stale_jobs", new_callable=AsyncMock):
        from app.main import app

        app.dependency_overrides[get_current_user] = lambda: USER
        app.dependency_overrides[get_scan_service] = lambda: scan_service
        app.dependency_overrides[get_pr_scan_service] = lambda: pr_scan_service
        app.dependency_overrides[get_pr_monitor] = lambda: monitor
        app.dependency_overrides[get_job_store] = lambda: job_store
        app.dependency_overrides[get_github_service] = lambda: GitHubService(webhook_secret="hook-secret")
        yield app
        app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


class TestAuthentication:
    """Test that scan routes require a bearer token."""

    def test_start_scan_without_token(self, app):
        app.dependency_overrides.pop(get_current_user)
        with TestClient(app) as client:
            response = client.post("/api/scans", json={"repository_id": str(uuid.uuid4())})

        assert response.status_code in (401, 403)

    def test_invalid_token(self, app):
        app.dependency_overrides.pop(get_current_user)
        with TestClient(app) as client:
            response = client.get(
                f"/api/scans/{uuid.uuid4()}",
                headers={"Authorization": "Bearer not-a-jwt"},
            )

        assert response.status_code == 401


class TestScanRoutes:
    """Test /api/scans."""

    def test_start_scan_returns_202(self, client, scan_service):
        job_id = uuid.uuid4()
        repository_id = uuid.uuid4()
        scan_service.start_scan.return_value = {"scan_job_id": job_id, "status": "started"}

        response = client.post(
            "/api/scans",
            json={"repository_id": str(repository_id), "scan_type": "full", "target_branch": "develop"},
        )

        assert response.status_code == 202
        assert response.json() == {"scan_job_id": str(job_id), "status": "started"}
        args, kwargs = scan_service.start_scan.call_args
        assert args == (USER.id, repository_id)
        assert kwargs["target_branch"] == "develop"

    def test_start_scan_validation_error_is_400(self, client, scan_service):
        scan_service.start_scan.side_effect = ValidationError("files_to_scan is required for file scans")

        response = client.post("/api/scans", json={"repository_id": str(uuid.uuid4()), "scan_type": "file"})

        assert response.status_code == 400
        assert "files_to_scan" in response.json()["detail"]

    def test_start_scan_unknown_repository_is_404(self, client, scan_service):
        scan_service.start_scan.side_effect = NotFoundOrForbiddenError("Repository not found")

        response = client.post("/api/scans", json={"repository_id": str(uuid.uuid4())})

        assert response.status_code == 404

    def test_get_scan_with_results(self, client, scan_service):
        job = _scan_job()
        scan_service.get_scan_results.return_value = {
            "scan_job": job,
            "results": {
                "app.js": SimpleNamespace(
                    file_path="app.js",
                    file_content_hash="abc",
                    vulnerabilities=[{"title": "SQL Injection", "severity": "high"}],
                    fixes=[],
                    error=None,
                )
            },
        }

        response = client.get(f"/api/scans/{job.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["scan_job"]["status"] == "completed"
        assert data["results"]["app.js"]["vulnerabilities"][0]["severity"] == "high"


class TestPRScanRoutes:
    """Test pull request scan routes."""

    def test_start_pr_scan(self, client, pr_scan_service):
        job_id = uuid.uuid4()
        pull_request_id = uuid.uuid4()
        pr_scan_service.start_pr_scan.return_value = {"pr_scan_job_id": job_id, "status": "started"}

        response = client.post(f"/api/pull-requests/{pull_request_id}/scan")

        assert response.status_code == 202
        assert response.json()["pr_scan_job_id"] == str(job_id)
        pr_scan_service.start_pr_scan.assert_awaited_once_with(USER.id, pull_request_id, scan_type="pr_diff")

    def test_start_pr_scan_upstream_error_is_502(self, client, pr_scan_service):
        pr_scan_service.start_pr_scan.side_effect = UpstreamFetchError("GitHub returned 500", 500)

        response = client.post(f"/api/pull-requests/{uuid.uuid4()}/scan")

        assert response.status_code == 502

    def test_security_summary_missing_is_404(self, client, pr_scan_service):
        pr_scan_service.get_security_summary.side_effect = NotFoundOrForbiddenError(
            "No completed scan for this pull request"
        )

        response = client.get(f"/api/pull-requests/{uuid.uuid4()}/security-summary")

        assert response.status_code == 404

    def test_sync_prs(self, client, pr_scan_service):
        pr_scan_service.sync_pull_requests.return_value = {"prs_added": 3, "prs_updated": 1}

        response = client.post(f"/api/repositories/{uuid.uuid4()}/sync-prs")

        assert response.status_code == 200
        assert response.json() == {"prs_added": 3, "prs_updated": 1}


class TestMonitoringRoutes:
    """Test /api/monitoring."""

    def test_status(self, client):
        response = client.get("/api/monitoring/status")

        assert response.status_code == 200
        assert response.json()["watched_repositories"] == 2

    def test_start_and_stop(self, client, monitor):
        assert client.post("/api/monitoring/start").status_code == 200
        assert client.post("/api/monitoring/stop").status_code == 200

        monitor.start.assert_awaited()
        monitor.stop.assert_awaited()

    def test_set_interval(self, client, monitor):
        response = client.put("/api/monitoring/interval", json={"interval_seconds": 30})

        assert response.status_code == 200
        monitor.set_interval.assert_awaited_once_with(30.0)

    def test_interval_must_be_positive(self, client, monitor):
        response = client.put("/api/monitoring/interval", json={"interval_seconds": 0})

        assert response.status_code == 422
        monitor.set_interval.assert_not_awaited()


class TestGitHubWebhook:
    """Test /webhooks/github."""

    def _post(self, client, event: str, body: dict, secret: str = "hook-secret"):
        payload = json.dumps(body).encode()
        signature = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return client.post(
            "/webhooks/github",
            content=payload,
            headers={
                "X-Hub-Signature-256": signature,
                "X-GitHub-Event": event,
                "X-GitHub-Delivery": "delivery-1",
                "Content-Type": "application/json",
            },
        )

    def test_bad_signature_is_401(self, client):
        response = self._post(client, "ping", {}, secret="wrong")

        assert response.status_code == 401

    def test_ping(self, client):
        assert self._post(client, "ping", {"zen": "Keep it simple."}).json() == {"status": "pong"}

    def test_pull_request_opened(self, client, job_store, monitor):
        repository = SimpleNamespace(id=uuid.uuid4(), full_name="org/repo")
        job_store.get_repository_by_github_id.return_value = repository
        pr_data = {"number": 5, "title": "Add login"}

        response = self._post(
            client,
            "pull_request",
            {"action": "opened", "repository": {"id": 555}, "pull_request": pr_data},
        )

        assert response.status_code == 200
        assert response.json()["scans_requested"] == 1
        job_store.get_repository_by_github_id.assert_awaited_once_with(555)
        monitor.handle_pull_request_event.assert_awaited_once_with("opened", repository, pr_data)

    def test_unknown_repository_is_ignored(self, client, job_store, monitor):
        job_store.get_repository_by_github_id.return_value = None

        response = self._post(
            client,
            "pull_request",
            {"action": "opened", "repository": {"id": 999}, "pull_request": {"number": 1}},
        )

        assert response.json()["status"] == "ignored"
        monitor.handle_pull_request_event.assert_not_awaited()

    def test_unhandled_action_is_ignored(self, client, monitor):
        response = self._post(
            client,
            "pull_request",
            {"action": "labeled", "repository": {"id": 555}, "pull_request": {"number": 1}},
        )

        assert response.json()["status"] == "ignored"
        monitor.handle_pull_request_event.assert_not_awaited()
