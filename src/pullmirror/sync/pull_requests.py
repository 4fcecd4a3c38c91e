"""Sync of the user's open pull requests through GraphQL search."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pullmirror.state.models import PullRequestRow, format_timestamp, utc_now
from pullmirror.sync.notify import SyncEvent, SyncEventKind

if TYPE_CHECKING:
    from pullmirror.github.client import ConditionalRequestClient
    from pullmirror.state.store import SyncStore
    from pullmirror.sync.notify import NotificationSink

logger = logging.getLogger(__name__)

_PULL_REQUEST_FIELDS = """
        __typename
        ... on PullRequest {
          id
          number
          title
          body
          state
          isDraft
          url
          createdAt
          updatedAt
          closedAt
          mergedAt
          repository { name owner { login } }
          author { login avatarUrl }
          labels(first: 10) { nodes { name } }
          assignees(first: 10) { nodes { login } }
        }
"""

SEARCH_PULL_REQUESTS_QUERY = f"""
query SearchPullRequests($authorQuery: String!, $assigneeQuery: String!, $reviewQuery: String!) {{
  authored: search(query: $authorQuery, type: ISSUE, first: 100) {{
    nodes {{{_PULL_REQUEST_FIELDS}    }}
  }}
  assigned: search(query: $assigneeQuery, type: ISSUE, first: 100) {{
    nodes {{{_PULL_REQUEST_FIELDS}    }}
  }}
  reviewRequested: search(query: $reviewQuery, type: ISSUE, first: 100) {{
    nodes {{{_PULL_REQUEST_FIELDS}    }}
  }}
  rateLimit {{ limit remaining resetAt }}
}}
"""

SEARCH_VARIABLES = {
    "authorQuery": "is:pr is:open author:@me",
    "assigneeQuery": "is:pr is:open assignee:@me",
    "reviewQuery": "is:pr is:open review-requested:@me",
}

# Search alias -> relation flag it sets
_RELATIONS = (
    ("authored", "is_author"),
    ("assigned", "is_assignee"),
    ("reviewRequested", "is_reviewer"),
)


@dataclass
class PullRequestSyncResult:
    """Outcome of a pull request list sync.

    Attributes:
        synced: Number of pull requests written
        errors: Error messages
    """

    synced: int = 0
    errors: list[str] = field(default_factory=list)


def _nodes(data: dict[str, Any], alias: str) -> list[dict[str, Any]]:
    search = data.get(alias) or {}
    return [
        node
        for node in search.get("nodes") or []
        if isinstance(node, dict) and node.get("__typename") == "PullRequest"
    ]


def _to_row(node: dict[str, Any], flags: dict[str, bool], synced_at: str) -> PullRequestRow:
    repository = node.get("repository") or {}
    author = node.get("author") or {}
    return PullRequestRow(
        id=node["id"],
        number=node["number"],
        title=node.get("title") or "",
        body=node.get("body"),
        state=node.get("state") or "OPEN",
        url=node.get("url") or "",
        repository_owner=(repository.get("owner") or {}).get("login") or "",
        repository_name=repository.get("name") or "",
        author_login=author.get("login"),
        author_avatar_url=author.get("avatarUrl"),
        is_draft=bool(node.get("isDraft")),
        labels=[label["name"] for label in (node.get("labels") or {}).get("nodes") or []],
        assignees=[user["login"] for user in (node.get("assignees") or {}).get("nodes") or []],
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
        closed_at=node.get("closedAt"),
        merged_at=node.get("mergedAt"),
        synced_at=synced_at,
        **flags,
    )


async def sync_pull_requests(
    client: ConditionalRequestClient,
    store: SyncStore,
    sink: NotificationSink | None = None,
) -> PullRequestSyncResult:
    """Fetch open pull requests the user authored, is assigned to, or reviews.

    A pull request found by several searches is stored once with every
    matching relation flag set. Stored head_sha and details_synced_at
    values are kept.

    Args:
        client: Client used for the GraphQL search (bulk budget).
        store: Store receiving the pull requests.
        sink: Notified with a pull-requests event after a successful sync.

    Returns:
        PullRequestSyncResult. A failed query is reported in errors, not raised.
    """
    try:
        data = await client.graphql(SEARCH_PULL_REQUESTS_QUERY, SEARCH_VARIABLES)
    except Exception as e:  # noqa: BLE001
        logger.warning("Failed to fetch pull requests: %s", e)
        return PullRequestSyncResult(errors=[f"Failed to fetch pull requests: {e}"])

    nodes: dict[str, dict[str, Any]] = {}
    flags: dict[str, dict[str, bool]] = {}
    for alias, flag in _RELATIONS:
        for node in _nodes(data, alias):
            nodes.setdefault(node["id"], node)
            flags.setdefault(
                node["id"],
                {"is_author": False, "is_assignee": False, "is_reviewer": False},
            )[flag] = True

    synced_at = format_timestamp(utc_now()) or ""
    result = PullRequestSyncResult()
    with store.transaction():
        for node_id, node in nodes.items():
            store.upsert_pull_request(_to_row(node, flags[node_id], synced_at))
            result.synced += 1

    logger.info("Synced %d pull requests", result.synced)
    if sink is not None:
        sink.notify(SyncEvent(SyncEventKind.PULL_REQUESTS))
    return result
