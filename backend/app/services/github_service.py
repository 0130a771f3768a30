"""GitHub REST API client used by scans and the PR monitor."""

import hashlib
import hmac
import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from app.config import get_settings
from app.exceptions import (
    RateLimitedError,
    UpstreamFetchError,
    UpstreamForbiddenError,
    UpstreamNotFoundError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

PR_TITLE_MAX = 500
PR_BODY_MAX = 5000


def _sanitize_error(error: str) -> str:
    """Redact GitHub tokens from error text."""
    error = re.sub(r"gh[pousr]_[a-zA-Z0-9]+", "[REDACTED]", error)
    error = re.sub(r"Bearer [^\s\"']+", "Bearer [REDACTED]", error)
    return error


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def pull_request_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Map a GitHub pull request payload onto PullRequest column values."""
    user = data.get("user") or {}
    base = data.get("base") or {}
    head = data.get("head") or {}
    return {
        "number": data["number"],
        "title": (data.get("title") or "")[:PR_TITLE_MAX],
        "description": (data.get("body") or "")[:PR_BODY_MAX] or None,
        "author_username": user.get("login"),
        "author_avatar_url": user.get("avatar_url"),
        "html_url": data.get("html_url"),
        "base_branch": base.get("ref") or "main",
        "head_branch": head.get("ref") or "main",
        "base_commit_sha": base.get("sha"),
        "head_commit_sha": head.get("sha"),
        "status": "open" if data.get("state") == "open" else "closed",
        "opened_at": _parse_timestamp(data.get("created_at")),
        "updated_at": _parse_timestamp(data.get("updated_at")),
        "merged_at": _parse_timestamp(data.get("merged_at")),
    }


class GitHubService:
    """Service for GitHub API operations authenticated with a user token.

    Every method raises an `UpstreamFetchError` subclass on failure:
    404 -> UpstreamNotFoundError, 429 or 403 with an exhausted rate limit ->
    RateLimitedError, other 401/403 -> UpstreamForbiddenError.
    """

    def __init__(
        self,
        api_base: str | None = None,
        webhook_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.api_base = (api_base or settings.github_api_base).rstrip("/")
        self.webhook_secret = settings.github_webhook_secret if webhook_secret is None else webhook_secret
        self._transport = transport
        self._timeout = timeout

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _headers(self, token: str, accept: str = "application/vnd.github+json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _raise_for_status(self, response: httpx.Response, what: str) -> None:
        status_code = response.status_code
        if status_code < 400:
            return
        if status_code == 404:
            raise UpstreamNotFoundError(f"{what} not found", status_code)
        if status_code == 429 or (
            status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimitedError(f"GitHub rate limit exceeded while fetching {what}", status_code)
        if status_code in (401, 403):
            raise UpstreamForbiddenError(f"Access to {what} denied", status_code)
        raise UpstreamFetchError(
            f"GitHub returned {status_code} for {what}: {_sanitize_error(response.text[:200])}",
            status_code,
        )

    async def _get(
        self,
        token: str,
        path: str,
        what: str,
        params: dict[str, Any] | None = None,
        accept: str = "application/vnd.github+json",
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.get(
                    f"{self.api_base}{path}",
                    params=params,
                    headers=self._headers(token, accept),
                )
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"GitHub request for {what} failed: {_sanitize_error(str(exc))}") from exc
        self._raise_for_status(response, what)
        return response

    # =========================================================================
    # Repository contents
    # =========================================================================

    async def list_directory(
        self,
        token: str,
        full_name: str,
        path: str = "",
        ref: str | None = None,
    ) -> list[dict[str, Any]]:
        """List one directory of the contents API.

        Returns:
            Entries with at least name, path, type ("file"/"dir") and size
        """
        params = {"ref": ref} if ref else None
        response = await self._get(
            token,
            f"/repos/{full_name}/contents/{path}".rstrip("/"),
            f"{full_name}/{path or '.'}",
            params=params,
        )
        data = response.json()
        # A file path returns a single object instead of a list
        return data if isinstance(data, list) else [data]

    async def get_file_content(
        self,
        token: str,
        full_name: str,
        path: str,
        ref: str | None = None,
    ) -> str:
        """Get raw file content at a ref."""
        params = {"ref": ref} if ref else None
        response = await self._get(
            token,
            f"/repos/{full_name}/contents/{path}",
            f"{full_name}/{path}",
            params=params,
            accept="application/vnd.github.raw",
        )
        return response.text

    # =========================================================================
    # Pull requests
    # =========================================================================

    async def list_open_pull_requests(
        self,
        token: str,
        full_name: str,
        per_page: int = 10,
    ) -> list[dict[str, Any]]:
        """Newest open pull requests first."""
        response = await self._get(
            token,
            f"/repos/{full_name}/pulls",
            f"{full_name} pull requests",
            params={"state": "open", "sort": "created", "direction": "desc", "per_page": per_page},
        )
        return response.json()

    async def list_pull_requests(
        self,
        token: str,
        full_name: str,
        state: str = "all",
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        """Most recently updated pull requests, any state."""
        response = await self._get(
            token,
            f"/repos/{full_name}/pulls",
            f"{full_name} pull requests",
            params={"state": state, "sort": "updated", "direction": "desc", "per_page": per_page},
        )
        return response.json()

    async def get_pull_request_files(
        self,
        token: str,
        full_name: str,
        number: int,
        max_pages: int = 30,
    ) -> list[dict[str, Any]]:
        """Changed files of a pull request (filename, status, patch)."""
        files: list[dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            response = await self._get(
                token,
                f"/repos/{full_name}/pulls/{number}/files",
                f"{full_name}#{number} files",
                params={"per_page": 100, "page": page},
            )
            batch = response.json()
            files.extend(batch)
            if len(batch) < 100:
                break
        return files

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify GitHub webhook signature.

        Uses constant-time comparison to prevent timing attacks.

        Args:
            payload: Raw request body
            signature: X-Hub-Signature-256 header value

        Returns:
            True if signature is valid
        """
        if not self.webhook_secret or not signature or not signature.startswith("sha256="):
            return False

        expected = hmac.new(
            self.webhook_secret.encode(),
            payload,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(f"sha256={expected}", signature)
