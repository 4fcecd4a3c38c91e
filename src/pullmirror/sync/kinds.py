"""Resource kind adapters for the reconciler.

Each adapter tells the generic reconciler three things about a kind of
GitHub resource: how to read an item's remote identity, how to map an
item onto a row, and which rows to drop after a pass. The mappers read
GitHub REST payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pullmirror.state.models import (
    CheckRow,
    CommentReactionRow,
    CommentRow,
    CommitRow,
    ModifiedFileRow,
    ReviewRow,
    SyncedRow,
    parse_timestamp,
)
from pullmirror.sync.text import comment_line_numbers, normalize_body

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

RowT = TypeVar("RowT", bound=SyncedRow)

Item = dict[str, Any]


class SyncKind(str, Enum):
    """Resource kinds synced for a pull request, in detail-sync order."""

    CHECKS = "checks"
    COMMITS = "commits"
    FILES = "files"
    REVIEWS = "reviews"
    COMMENTS = "comments"

    @property
    def label(self) -> str:
        """Capitalized name used in error messages."""
        return self.value.capitalize()


class CommentType(str, Enum):
    ISSUE = "issue"
    REVIEW = "review"


@dataclass(frozen=True)
class RowContext:
    """Values a mapper needs besides the item itself.

    Attributes:
        local_id: Existing local id for the identity, or a fresh one
        pull_request_id: Owning pull request
        synced_at: Timestamp of this reconciliation pass
        extras: Kind-specific values (commit_sha, comment_type, comment_id)
    """

    local_id: str
    pull_request_id: str
    synced_at: str
    extras: Mapping[str, Any]


@dataclass(frozen=True)
class ResourceKind(Generic[RowT]):
    """How one kind of remote item is stored.

    Attributes:
        name: Kind name for logs
        row_type: Row dataclass (selects the table)
        identity: Remote identity of an item, or None to skip it
        mapper: Builds a row from an item
        post_pass: Given the rows processed in order, returns rows to soft-delete
    """

    name: str
    row_type: type[RowT]
    identity: Callable[[Item], str | None]
    mapper: Callable[[Item, RowContext], RowT]
    post_pass: Callable[[list[RowT]], list[RowT]] | None = None


def _login(user: Any) -> str | None:
    return user.get("login") if isinstance(user, dict) else None


def _avatar(user: Any) -> str | None:
    return user.get("avatar_url") if isinstance(user, dict) else None


def _node_id(item: Item) -> str | None:
    node_id = item.get("node_id")
    if node_id:
        return str(node_id)
    numeric = item.get("id")
    return str(numeric) if numeric is not None else None


# -----------------------------------------------------------------------------
# Checks
# -----------------------------------------------------------------------------


def check_duration_seconds(started_at: str | None, completed_at: str | None) -> int | None:
    """Whole seconds between start and completion, or None if either is missing."""
    started = parse_timestamp(started_at)
    completed = parse_timestamp(completed_at)
    if started is None or completed is None:
        return None
    return round((completed - started).total_seconds())


def _check_identity(item: Item) -> str | None:
    check_id = item.get("id")
    return str(check_id) if check_id is not None else None


def _map_check(item: Item, ctx: RowContext) -> CheckRow:
    started_at = item.get("started_at")
    completed_at = item.get("completed_at")
    output = item.get("output") or {}
    app = item.get("app") or {}
    return CheckRow(
        id=ctx.local_id,
        remote_id=str(item["id"]),
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        name=item.get("name") or "",
        state=item.get("status") or "queued",
        conclusion=item.get("conclusion"),
        commit_sha=ctx.extras["commit_sha"],
        suite_name=app.get("name"),
        duration_in_seconds=check_duration_seconds(started_at, completed_at),
        details_url=item.get("details_url"),
        message=output.get("summary"),
        url=item.get("details_url"),
        remote_created_at=started_at,
        remote_updated_at=completed_at or started_at,
    )


def suppress_duplicate_checks(rows: list[CheckRow]) -> list[CheckRow]:
    """Later runs sharing (commit_sha, name) with an earlier run are duplicates.

    GitHub lists re-runs of a check as separate check runs. The first one in
    payload order is kept.
    """
    seen: set[tuple[str, str]] = set()
    duplicates: list[CheckRow] = []
    for row in rows:
        key = (row.commit_sha, row.name)
        if key in seen:
            duplicates.append(row)
        else:
            seen.add(key)
    return duplicates


CHECKS: ResourceKind[CheckRow] = ResourceKind(
    name="checks",
    row_type=CheckRow,
    identity=_check_identity,
    mapper=_map_check,
    post_pass=suppress_duplicate_checks,
)


# -----------------------------------------------------------------------------
# Commits
# -----------------------------------------------------------------------------


def _map_commit(item: Item, ctx: RowContext) -> CommitRow:
    commit = item.get("commit") or {}
    git_author = commit.get("author") or {}
    author = item.get("author")
    return CommitRow(
        id=ctx.local_id,
        remote_id=item["sha"],
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        hash=item["sha"],
        message=normalize_body(commit.get("message")) or "",
        url=item.get("html_url"),
        author_login=_login(author) or git_author.get("name"),
        author_avatar_url=_avatar(author),
        remote_created_at=git_author.get("date"),
    )


COMMITS: ResourceKind[CommitRow] = ResourceKind(
    name="commits",
    row_type=CommitRow,
    identity=lambda item: item.get("sha"),
    mapper=_map_commit,
)


# -----------------------------------------------------------------------------
# Modified files
# -----------------------------------------------------------------------------


def _map_file(item: Item, ctx: RowContext) -> ModifiedFileRow:
    filename = item["filename"]
    return ModifiedFileRow(
        id=ctx.local_id,
        remote_id=filename,
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        filename=filename,
        file_path=filename,
        status=item.get("status") or "modified",
        additions=item.get("additions") or 0,
        deletions=item.get("deletions") or 0,
        changes=item.get("changes") or 0,
        diff_hunk=item.get("patch"),
    )


FILES: ResourceKind[ModifiedFileRow] = ResourceKind(
    name="files",
    row_type=ModifiedFileRow,
    identity=lambda item: item.get("filename"),
    mapper=_map_file,
)


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------


def _map_review(item: Item, ctx: RowContext) -> ReviewRow:
    user = item.get("user")
    return ReviewRow(
        id=ctx.local_id,
        remote_id=_node_id(item) or "",
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        state=item.get("state") or "PENDING",
        body=normalize_body(item.get("body")),
        url=item.get("html_url"),
        author_login=_login(user),
        author_avatar_url=_avatar(user),
        remote_submitted_at=item.get("submitted_at"),
    )


REVIEWS: ResourceKind[ReviewRow] = ResourceKind(
    name="reviews",
    row_type=ReviewRow,
    identity=_node_id,
    mapper=_map_review,
)


# -----------------------------------------------------------------------------
# Comments and reactions
# -----------------------------------------------------------------------------


def _map_comment(item: Item, ctx: RowContext) -> CommentRow:
    user = item.get("user")
    diff_hunk = item.get("diff_hunk")
    line, original_line = comment_line_numbers(
        diff_hunk, item.get("line"), item.get("original_line")
    )
    return CommentRow(
        id=ctx.local_id,
        remote_id=_node_id(item) or "",
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        comment_type=CommentType(ctx.extras["comment_type"]).value,
        remote_numeric_id=item.get("id"),
        body=normalize_body(item.get("body")),
        path=item.get("path"),
        line=line,
        original_line=original_line,
        diff_hunk=diff_hunk,
        commit_id=item.get("commit_id"),
        original_commit_id=item.get("original_commit_id"),
        remote_review_id=item.get("pull_request_review_id"),
        parent_remote_id=item.get("in_reply_to_id"),
        user_login=_login(user),
        user_avatar_url=_avatar(user),
        url=item.get("html_url"),
        remote_created_at=item.get("created_at"),
        remote_updated_at=item.get("updated_at"),
    )


COMMENTS: ResourceKind[CommentRow] = ResourceKind(
    name="comments",
    row_type=CommentRow,
    identity=_node_id,
    mapper=_map_comment,
)


def _reaction_identity(item: Item) -> str | None:
    # Reactions from deleted users carry no user and are not stored.
    if not item.get("user"):
        return None
    return _node_id(item)


def _map_reaction(item: Item, ctx: RowContext) -> CommentReactionRow:
    user = item.get("user") or {}
    return CommentReactionRow(
        id=ctx.local_id,
        remote_id=_node_id(item) or "",
        pull_request_id=ctx.pull_request_id,
        synced_at=ctx.synced_at,
        comment_id=ctx.extras["comment_id"],
        content=item.get("content") or "",
        user_login=user.get("login"),
        user_id=user.get("id"),
    )


REACTIONS: ResourceKind[CommentReactionRow] = ResourceKind(
    name="reactions",
    row_type=CommentReactionRow,
    identity=_reaction_identity,
    mapper=_map_reaction,
)
