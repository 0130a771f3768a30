"""Tests for the GitHub API client."""

import hashlib
import hmac
import json

import httpx
import pytest

from app.exceptions import (
    RateLimitedError,
    UpstreamFetchError,
    UpstreamForbiddenError,
    UpstreamNotFoundError,
)
from app.services.github_service import GitHubService, _sanitize_error, pull_request_fields


def _service(handler, secret: str = "webhook-secret") -> GitHubService:
    return GitHubService(
        api_base="https://api.github.test",
        webhook_secret=secret,
        transport=httpx.MockTransport(handler),
    )


class TestStatusMapping:
    """Test mapping of GitHub errors onto upstream exceptions."""

    @pytest.mark.parametrize(
        "status_code, headers, expected",
        [
            (404, {}, UpstreamNotFoundError),
            (429, {}, RateLimitedError),
            (403, {"x-ratelimit-remaining": "0"}, RateLimitedError),
            (403, {"x-ratelimit-remaining": "42"}, UpstreamForbiddenError),
            (401, {}, UpstreamForbiddenError),
            (500, {}, UpstreamFetchError),
        ],
    )
    async def test_error_statuses(self, status_code, headers, expected):
        service = _service(lambda request: httpx.Response(status_code, headers=headers, text="nope"))

        with pytest.raises(expected) as exc:
            await service.get_file_content("gho_x", "org/repo", "app.js", "main")

        assert exc.value.status_code == status_code

    async def test_transport_error_becomes_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamFetchError):
            await _service(handler).list_directory("gho_x", "org/repo")


class TestContents:
    """Test repository contents calls."""

    async def test_get_file_content_requests_raw_at_ref(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["accept"] = request.headers["accept"]
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, text="console.log('hi')")

        content = await _service(handler).get_file_content("gho_x", "org/repo", "src/app.js", "develop")

        assert content == "console.log('hi')"
        assert seen["url"] == "https://api.github.test/repos/org/repo/contents/src/app.js?ref=develop"
        assert seen["accept"] == "application/vnd.github.raw"
        assert seen["auth"] == "Bearer gho_x"

    async def test_list_directory_root(self):
        entries = [
            {"name": "app.js", "path": "app.js", "type": "file", "size": 120},
            {"name": "lib", "path": "lib", "type": "dir", "size": 0},
        ]

        def handler(request):
            assert request.url.path == "/repos/org/repo/contents"
            return httpx.Response(200, json=entries)

        assert await _service(handler).list_directory("gho_x", "org/repo") == entries

    async def test_list_directory_on_file_path_wraps_object(self):
        entry = {"name": "app.js", "path": "app.js", "type": "file"}

        result = await _service(lambda request: httpx.Response(200, json=entry)).list_directory(
            "gho_x", "org/repo", "app.js"
        )

        assert result == [entry]


class TestPullRequests:
    """Test pull request calls."""

    async def test_list_open_pull_requests_params(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json=[{"number": 3}])

        pulls = await _service(handler).list_open_pull_requests("gho_x", "org/repo", per_page=10)

        assert pulls == [{"number": 3}]
        assert seen == {"state": "open", "sort": "created", "direction": "desc", "per_page": "10"}

    async def test_pull_request_files_are_paginated(self):
        pages = {
            "1": [{"filename": f"f{i}.py", "status": "modified"} for i in range(100)],
            "2": [{"filename": "last.py", "status": "added"}],
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params["page"]])

        files = await _service(handler).get_pull_request_files("gho_x", "org/repo", 7)

        assert len(files) == 101
        assert files[-1]["filename"] == "last.py"


class TestPullRequestFields:
    """Test mapping of a PR payload onto model columns."""

    def test_maps_and_truncates(self):
        data = {
            "number": 5,
            "title": "x" * 600,
            "body": None,
            "state": "closed",
            "user": {"login": "dev"},
            "base": {"ref": "main", "sha": "a" * 40},
            "head": {"ref": "fix", "sha": "b" * 40},
            "created_at": "2024-05-01T10:00:00Z",
            "merged_at": None,
        }

        fields = pull_request_fields(data)

        assert fields["number"] == 5
        assert len(fields["title"]) == 500
        assert fields["description"] is None
        assert fields["status"] == "closed"
        assert fields["head_branch"] == "fix"
        assert fields["opened_at"].year == 2024
        assert fields["opened_at"].tzinfo is None
        assert fields["merged_at"] is None


class TestWebhookSignature:
    """Test webhook signature verification."""

    def _sign(self, payload: bytes, secret: str = "webhook-secret") -> str:
        return "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        payload = json.dumps({"action": "opened"}).encode()

        assert _service(None).verify_webhook_signature(payload, self._sign(payload)) is True

    def test_wrong_secret(self):
        payload = b"{}"

        assert _service(None).verify_webhook_signature(payload, self._sign(payload, "other")) is False

    def test_missing_secret_rejects_everything(self):
        payload = b"{}"

        assert _service(None, secret="").verify_webhook_signature(payload, self._sign(payload, "")) is False


def test_sanitize_error_redacts_tokens():
    text = _sanitize_error("failed with ghp_abcDEF123 and Bearer gho_zzz")

    assert "abcDEF123" not in text
    assert "gho_zzz" not in text
