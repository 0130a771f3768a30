"""Pytest configuration and fixtures."""

import os

# Settings are read at import time by several modules
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("PR_MONITOR_ENABLED", "false")
os.environ.setdefault("GEMINI_API_KEY", "")

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings
from app.database import Base
from app.models.pull_request import PullRequest
from app.models.repository import Repository
from app.models.repository_watch import RepositoryWatch
from app.models.user import User
from app.services.job_store import JobStore
from app.tasks.runner import BackgroundRunner

SAMPLE_APP_JS = '''const express = require("express");
const db = require("./db");

const app = express();

app.get("/users", async (req, res) => {
  const id = req.query.id;
  if (!id) {
    return res.status(400).send("missing id");
  }

  const rows = await db.query("SELECT * FROM users WHERE id = " + id);
  res.json(rows);
});

module.exports = app;
'''


@pytest.fixture
def sample_app_js():
    """Express handler with a string-concatenated SQL query on line 12."""
    return SAMPLE_APP_JS


@pytest.fixture
async def engine(tmp_path):
    """SQLite engine with every table created."""
    import app.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scans.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def settings():
    """Settings with a zero backoff so rate-limit paths don't sleep."""
    return Settings(
        scan_batch_size=10,
        rate_limit_backoff_seconds=0,
        task_backend="inprocess",
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def runner():
    return BackgroundRunner()


@pytest.fixture
async def user(session_factory):
    """Repository owner with a connected GitHub account."""
    async with session_factory() as session:
        user = User(
            github_id=1001,
            github_login="octocat",
            email="octocat@example.com",
            github_access_token="gho_testtoken",
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def repository(session_factory, user):
    async with session_factory() as session:
        repository = Repository(
            user_id=user.id,
            github_repo_id=555,
            owner="org",
            name="repo",
            full_name="org/repo",
            default_branch="main",
        )
        session.add(repository)
        await session.commit()
        await session.refresh(repository)
        return repository


@pytest.fixture
async def watch(session_factory, user, repository):
    async with session_factory() as session:
        watch = RepositoryWatch(
            user_id=user.id,
            repository_id=repository.id,
            email_notifications=True,
            scan_on_open=True,
            scan_on_sync=True,
            scan_on_merge=False,
        )
        session.add(watch)
        await session.commit()
        await session.refresh(watch)
        return watch


@pytest.fixture
async def pull_request(session_factory, repository):
    async with session_factory() as session:
        pull_request = PullRequest(
            repository_id=repository.id,
            number=7,
            title="Add user lookup endpoint",
            author_username="contributor",
            html_url="https://github.com/org/repo/pull/7",
            base_branch="main",
            head_branch="feature/user-lookup",
            base_commit_sha="a" * 40,
            head_commit_sha="b" * 40,
            status="open",
        )
        session.add(pull_request)
        await session.commit()
        await session.refresh(pull_request)
        return pull_request


@pytest.fixture
def github_service():
    """GitHub client double; tests configure the calls they need."""
    service = MagicMock()
    service.list_directory = AsyncMock(return_value=[])
    service.get_file_content = AsyncMock(return_value="")
    service.list_open_pull_requests = AsyncMock(return_value=[])
    service.list_pull_requests = AsyncMock(return_value=[])
    service.get_pull_request_files = AsyncMock(return_value=[])
    return service


@pytest.fixture
def analysis_service():
    service = MagicMock()
    service.analyze = AsyncMock(return_value={"vulnerabilities": [], "fixes": [], "metadata": {}})
    service.analyze_diff = AsyncMock(
        return_value={
            "vulnerabilities_added": [],
            "vulnerabilities_fixed": [],
            "vulnerabilities_unchanged": [],
            "fixes": [],
            "impact": {},
            "metadata": {},
        }
    )
    return service


def pull_request_payload(number: int, title: str | None = None, **overrides) -> dict:
    """GitHub pull request payload as returned by the REST API."""
    data = {
        "number": number,
        "title": title or f"Change #{number}",
        "body": "Description",
        "state": "open",
        "html_url": f"https://github.com/org/repo/pull/{number}",
        "user": {"login": "contributor", "avatar_url": "https://avatars.example.com/u/1"},
        "base": {"ref": "main", "sha": "a" * 40},
        "head": {"ref": f"feature/{number}", "sha": "b" * 40},
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-01T11:00:00Z",
        "merged_at": None,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_pr_payload():
    return pull_request_payload
