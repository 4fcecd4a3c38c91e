"""Shared pytest fixtures for pullmirror tests.

This module provides common fixtures for:
- Temporary config files
- A fake clock and a fake sleep that advances it
- Test database instances with a seeded pull request
- An in-process GitHub API (httpx.MockTransport) and client factory
- Sample GitHub REST payloads
"""

from __future__ import annotations

import tempfile
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pytest
import structlog
import yaml

from pullmirror.github import (
    ConditionalRequestClient,
    RateLimitTracker,
    StaticCredentialProvider,
)
from pullmirror.state import ETagCache, PullRequestRow, SyncStore
from pullmirror.sync import PullRequestSyncer, RecordingSink

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

PR_ID = "PR_kwDOAAABc84"
OWNER = "octocat"
REPO = "hello-world"
NUMBER = 42
HEAD_SHA = "6dcb09b5b57875f334f61aebed695e2e4193db5e"

# Unix seconds of 2026-01-10T15:30:00Z
NOW = 1768059000.0


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Callable clock returning a settable unix time."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Awaitable sleep that records durations and advances a FakeClock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def frozen_time() -> datetime:
    """Return a fixed datetime for deterministic tests.

    Use with freezegun's freeze_time decorator:

        @freeze_time("2026-01-10T15:30:00Z")
        def test_something(frozen_time):
            assert datetime.now(UTC) == frozen_time
    """
    return datetime(2026, 1, 10, 15, 30, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo configure_logging() so later tests do not write to a closed stream."""
    yield
    structlog.reset_defaults()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> dict[str, Any]:
    """Return a sample configuration touching every section."""
    return {
        "version": 1,
        "github": {
            "base_url": "https://github.example.com/api/v3/",
            "timeout_seconds": 15,
            "max_quota_retries": 3,
        },
        "sync": {
            "running_checks_interval_seconds": 2,
            "idle_interval_seconds": 10,
        },
        "state": {
            "database_name": "mirror.db",
        },
    }


@pytest.fixture
def write_config(temp_dir: Path) -> Callable[..., Path]:
    """Factory fixture to write config files.

    Args:
        config: Configuration dictionary
        filename: Name of the config file (default: config.yaml)

    Returns:
        Path to the written config file
    """

    def _write(config: dict[str, Any], filename: str = "config.yaml") -> Path:
        path = temp_dir / filename
        with path.open("w") as f:
            yaml.safe_dump(config, f)
        return path

    return _write


# ============================================================================
# Database Fixtures
# ============================================================================


def make_pull_request(**overrides: Any) -> PullRequestRow:
    """Build a pull request row with sensible defaults."""
    values: dict[str, Any] = {
        "id": PR_ID,
        "number": NUMBER,
        "title": "Add new feature",
        "body": "This PR adds...",
        "state": "OPEN",
        "url": f"https://github.com/{OWNER}/{REPO}/pull/{NUMBER}",
        "repository_owner": OWNER,
        "repository_name": REPO,
        "author_login": "octocat",
        "is_author": True,
        "created_at": "2026-01-08T09:00:00Z",
        "updated_at": "2026-01-10T14:00:00Z",
        "synced_at": "2026-01-10T15:00:00+00:00",
    }
    values.update(overrides)
    return PullRequestRow(**values)


@pytest.fixture
def test_db_path(temp_dir: Path) -> Path:
    """Return path for a test database file."""
    return temp_dir / "test_mirror.db"


@pytest.fixture
def store(test_db_path: Path) -> Generator[SyncStore, None, None]:
    """Create a SyncStore for testing.

    Yields:
        Initialized SyncStore instance (closed after test)
    """
    sync_store = SyncStore(test_db_path)
    yield sync_store
    sync_store.close()


@pytest.fixture
def pull_request(store: SyncStore) -> PullRequestRow:
    """Seed the store with one open pull request and return it."""
    row = make_pull_request()
    store.upsert_pull_request(row)
    return row


@pytest.fixture
def etags(store: SyncStore) -> ETagCache:
    return ETagCache(store)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ============================================================================
# Fake GitHub API
# ============================================================================


def respond(
    body: Any = None,
    *,
    status: int = 200,
    headers: dict[str, str] | None = None,
    etag: str | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Handler returning a JSON response.

    With an etag, a request whose If-None-Match matches it gets a 304.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        response_headers = dict(headers or {})
        if etag is not None:
            if request.headers.get("if-none-match") == etag:
                return httpx.Response(304, headers={"ETag": etag, **response_headers})
            response_headers["ETag"] = etag
        if body is None:
            return httpx.Response(status, headers=response_headers)
        return httpx.Response(status, json=body, headers=response_headers)

    return handler


class FakeGitHub:
    """Route table served through httpx.MockTransport.

    Each route holds a queue of handlers; every request consumes one until
    the last, which then answers all further requests.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], deque[Callable[[httpx.Request], httpx.Response]]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        *handlers: Callable[[httpx.Request], httpx.Response],
    ) -> None:
        self.routes[(method.upper(), path)] = deque(handlers)

    def json(self, method: str, path: str, body: Any = None, **kwargs: Any) -> None:
        self.add(method, path, respond(body, **kwargs))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        handler = queue.popleft() if len(queue) > 1 else queue[0]
        return handler(request)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def tracker(clock: FakeClock) -> RateLimitTracker:
    return RateLimitTracker(clock=clock)


@pytest.fixture
def make_client(
    github: FakeGitHub,
    tracker: RateLimitTracker,
    fake_sleep: FakeSleep,
    clock: FakeClock,
) -> Callable[..., ConditionalRequestClient]:
    """Factory fixture building a client wired to the fake API."""

    def _make(token: str | None = "ghp_test", **kwargs: Any) -> ConditionalRequestClient:
        kwargs.setdefault("base_url", "https://api.github.com")
        return ConditionalRequestClient(
            StaticCredentialProvider(token),
            tracker,
            http_client=httpx.AsyncClient(transport=github.transport()),
            sleep=fake_sleep,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def client(make_client: Callable[..., ConditionalRequestClient]) -> ConditionalRequestClient:
    return make_client()


@pytest.fixture
def syncer(
    client: ConditionalRequestClient,
    store: SyncStore,
    etags: ETagCache,
) -> PullRequestSyncer:
    return PullRequestSyncer(client, store, etags)


# ============================================================================
# GitHub API Payload Factories
# ============================================================================


def repo_path(suffix: str) -> str:
    """REST path under the seeded pull request's repository."""
    return f"/repos/{OWNER}/{REPO}/{suffix}"


def pull_payload(head_sha: str = HEAD_SHA) -> dict[str, Any]:
    return {
        "id": 100,
        "node_id": PR_ID,
        "number": NUMBER,
        "state": "open",
        "head": {"ref": "feature", "sha": head_sha},
    }


def check_run(
    check_id: int,
    name: str = "build",
    *,
    status: str = "completed",
    conclusion: str | None = "success",
    head_sha: str = HEAD_SHA,
) -> dict[str, Any]:
    return {
        "id": check_id,
        "name": name,
        "head_sha": head_sha,
        "status": status,
        "conclusion": conclusion if status == "completed" else None,
        "started_at": "2026-01-10T15:00:00Z",
        "completed_at": "2026-01-10T15:01:30Z" if status == "completed" else None,
        "details_url": f"https://github.com/{OWNER}/{REPO}/runs/{check_id}",
        "output": {"title": name, "summary": f"{name} finished"},
        "app": {"name": "GitHub Actions"},
    }


def check_runs(*runs: dict[str, Any]) -> dict[str, Any]:
    return {"total_count": len(runs), "check_runs": list(runs)}


def commit_payload(sha: str, message: str = "Fix bug") -> dict[str, Any]:
    return {
        "sha": sha,
        "html_url": f"https://github.com/{OWNER}/{REPO}/commit/{sha}",
        "commit": {
            "message": message,
            "author": {"name": "Mona", "date": "2026-01-09T10:00:00Z"},
        },
        "author": {"login": "octocat", "avatar_url": "https://avatars.example/1"},
    }


def file_payload(filename: str, status: str = "modified") -> dict[str, Any]:
    return {
        "filename": filename,
        "status": status,
        "additions": 3,
        "deletions": 1,
        "changes": 4,
        "patch": "@@ -1,2 +1,4 @@\n line\n+added",
    }


def review_payload(node_id: str, state: str = "APPROVED") -> dict[str, Any]:
    return {
        "id": 80,
        "node_id": node_id,
        "state": state,
        "body": "Looks good",
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/{NUMBER}#pullrequestreview-80",
        "user": {"login": "reviewer1", "avatar_url": "https://avatars.example/4"},
        "submitted_at": "2026-01-10T12:00:00Z",
    }


def issue_comment_payload(
    comment_id: int,
    body: str = "Nice work",
    *,
    reactions: int = 0,
) -> dict[str, Any]:
    return {
        "id": comment_id,
        "node_id": f"IC_{comment_id}",
        "body": body,
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/{NUMBER}#issuecomment-{comment_id}",
        "user": {"login": "commenter", "avatar_url": "https://avatars.example/5"},
        "created_at": "2026-01-10T11:00:00Z",
        "updated_at": "2026-01-10T11:00:00Z",
        "reactions": {"total_count": reactions},
    }


def review_comment_payload(
    comment_id: int,
    diff_hunk: str,
    *,
    line: int | None = 12,
    original_line: int | None = 10,
) -> dict[str, Any]:
    return {
        "id": comment_id,
        "node_id": f"RC_{comment_id}",
        "body": "Consider renaming",
        "path": "src/app.py",
        "line": line,
        "original_line": original_line,
        "diff_hunk": diff_hunk,
        "commit_id": HEAD_SHA,
        "original_commit_id": HEAD_SHA,
        "pull_request_review_id": 80,
        "in_reply_to_id": None,
        "user": {"login": "reviewer1", "avatar_url": "https://avatars.example/4"},
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/{NUMBER}#discussion_r{comment_id}",
        "created_at": "2026-01-10T12:00:00Z",
        "updated_at": "2026-01-10T12:00:00Z",
    }


def reaction_payload(
    reaction_id: int,
    content: str = "+1",
    *,
    login: str | None = "fan",
) -> dict[str, Any]:
    return {
        "id": reaction_id,
        "node_id": f"REA_{reaction_id}",
        "content": content,
        "user": {"login": login, "id": reaction_id * 10} if login else None,
    }

