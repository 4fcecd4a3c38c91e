"""Row models for the mirror database.

Each synced resource kind has one dataclass whose fields match its table
columns one to one. Rows are keyword-only so the shared bookkeeping
fields can sit in a base class.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def format_timestamp(dt: datetime | None) -> str | None:
    """Format a datetime to ISO string for storage.

    Args:
        dt: datetime to format (naive values are taken as UTC)

    Returns:
        ISO format string or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO format timestamp string (GitHub or stored) to datetime.

    Args:
        value: ISO format timestamp string or None

    Returns:
        datetime in UTC or None
    """
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


RUNNING_CHECK_STATES = ("in_progress", "queued")


def new_local_id() -> str:
    """Generate a local row id."""
    return str(uuid.uuid4())


@dataclass(kw_only=True)
class SyncedRow:
    """Bookkeeping shared by every synced resource row.

    Attributes:
        id: Local UUID, stable across remote edits
        remote_id: Identity of the item on GitHub
        pull_request_id: Owning pull request (GitHub node id)
        synced_at: When the row was last written by a sync
        deleted_at: When the row was soft-deleted, or None while active
    """

    TABLE: ClassVar[str] = ""

    id: str
    remote_id: str
    pull_request_id: str
    synced_at: str
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass(kw_only=True)
class CheckRow(SyncedRow):
    """A check run on the pull request's head commit."""

    TABLE: ClassVar[str] = "checks"

    name: str
    state: str
    conclusion: str | None = None
    commit_sha: str
    suite_name: str | None = None
    duration_in_seconds: int | None = None
    details_url: str | None = None
    message: str | None = None
    url: str | None = None
    remote_created_at: str | None = None
    remote_updated_at: str | None = None

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_CHECK_STATES


@dataclass(kw_only=True)
class CommitRow(SyncedRow):
    TABLE: ClassVar[str] = "commits"

    hash: str
    message: str
    url: str | None = None
    author_login: str | None = None
    author_avatar_url: str | None = None
    remote_created_at: str | None = None


@dataclass(kw_only=True)
class ModifiedFileRow(SyncedRow):
    TABLE: ClassVar[str] = "modified_files"

    filename: str
    file_path: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    diff_hunk: str | None = None


@dataclass(kw_only=True)
class ReviewRow(SyncedRow):
    TABLE: ClassVar[str] = "reviews"

    state: str
    body: str | None = None
    url: str | None = None
    author_login: str | None = None
    author_avatar_url: str | None = None
    remote_submitted_at: str | None = None


@dataclass(kw_only=True)
class CommentRow(SyncedRow):
    """An issue comment or a review (inline) comment.

    ``comment_type`` separates the two lists, which are fetched from
    different endpoints and reconciled independently.
    """

    TABLE: ClassVar[str] = "comments"

    comment_type: str
    remote_numeric_id: int | None = None
    body: str | None = None
    path: str | None = None
    line: int | None = None
    original_line: int | None = None
    diff_hunk: str | None = None
    commit_id: str | None = None
    original_commit_id: str | None = None
    remote_review_id: int | None = None
    parent_remote_id: int | None = None
    user_login: str | None = None
    user_avatar_url: str | None = None
    url: str | None = None
    remote_created_at: str | None = None
    remote_updated_at: str | None = None


@dataclass(kw_only=True)
class CommentReactionRow(SyncedRow):
    TABLE: ClassVar[str] = "comment_reactions"

    comment_id: str
    content: str
    user_login: str | None = None
    user_id: int | None = None


@dataclass(kw_only=True)
class PullRequestRow:
    """A pull request the user authored, is assigned to, or reviews.

    ``head_sha`` and ``details_synced_at`` are owned by the detail sync;
    list syncs never overwrite them.
    """

    TABLE: ClassVar[str] = "pull_requests"

    id: str
    number: int
    title: str
    body: str | None = None
    state: str
    url: str
    repository_owner: str
    repository_name: str
    author_login: str | None = None
    author_avatar_url: str | None = None
    is_draft: bool = False
    is_author: bool = False
    is_assignee: bool = False
    is_reviewer: bool = False
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    merged_at: str | None = None
    head_sha: str | None = None
    synced_at: str
    details_synced_at: str | None = None

    @property
    def repo_params(self) -> dict[str, Any]:
        """Route parameters addressing this pull request."""
        return {
            "owner": self.repository_owner,
            "repo": self.repository_name,
            "pull_number": self.number,
        }

    def to_record(self) -> dict[str, Any]:
        """Column values for storage."""
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "body": self.body,
            "state": self.state,
            "url": self.url,
            "repository_owner": self.repository_owner,
            "repository_name": self.repository_name,
            "author_login": self.author_login,
            "author_avatar_url": self.author_avatar_url,
            "is_draft": int(self.is_draft),
            "is_author": int(self.is_author),
            "is_assignee": int(self.is_assignee),
            "is_reviewer": int(self.is_reviewer),
            "labels": json.dumps(self.labels),
            "assignees": json.dumps(self.assignees),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "closed_at": self.closed_at,
            "merged_at": self.merged_at,
            "head_sha": self.head_sha,
            "synced_at": self.synced_at,
            "details_synced_at": self.details_synced_at,
        }

    @classmethod
    def from_record(cls, record: Any) -> PullRequestRow:
        """Build from a sqlite3.Row (or mapping) of the pull_requests table."""
        return cls(
            id=record["id"],
            number=record["number"],
            title=record["title"],
            body=record["body"],
            state=record["state"],
            url=record["url"],
            repository_owner=record["repository_owner"],
            repository_name=record["repository_name"],
            author_login=record["author_login"],
            author_avatar_url=record["author_avatar_url"],
            is_draft=bool(record["is_draft"]),
            is_author=bool(record["is_author"]),
            is_assignee=bool(record["is_assignee"]),
            is_reviewer=bool(record["is_reviewer"]),
            labels=json.loads(record["labels"] or "[]"),
            assignees=json.loads(record["assignees"] or "[]"),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            closed_at=record["closed_at"],
            merged_at=record["merged_at"],
            head_sha=record["head_sha"],
            synced_at=record["synced_at"],
            details_synced_at=record["details_synced_at"],
        )


ROW_TYPES: tuple[type[SyncedRow], ...] = (
    CheckRow,
    CommitRow,
    ModifiedFileRow,
    ReviewRow,
    CommentRow,
    CommentReactionRow,
)
