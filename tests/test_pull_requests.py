"""Tests for the pull request list sync."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from conftest import make_pull_request
from pullmirror.github import BudgetType
from pullmirror.sync import RecordingSink, SyncEvent, SyncEventKind, sync_pull_requests
from pullmirror.sync.pull_requests import SEARCH_VARIABLES

if TYPE_CHECKING:
    from conftest import FakeGitHub
    from pullmirror.github import ConditionalRequestClient, RateLimitTracker
    from pullmirror.state import SyncStore

pytestmark = pytest.mark.asyncio


def pr_node(node_id: str, number: int, **overrides: Any) -> dict[str, Any]:
    node: dict[str, Any] = {
        "__typename": "PullRequest",
        "id": node_id,
        "number": number,
        "title": f"PR {number}",
        "body": "Body",
        "state": "OPEN",
        "isDraft": False,
        "url": f"https://github.com/octocat/hello-world/pull/{number}",
        "createdAt": "2026-01-08T09:00:00Z",
        "updatedAt": "2026-01-10T14:00:00Z",
        "closedAt": None,
        "mergedAt": None,
        "repository": {"name": "hello-world", "owner": {"login": "octocat"}},
        "author": {"login": "octocat", "avatarUrl": "https://avatars.example/1"},
        "labels": {"nodes": [{"name": "bug"}]},
        "assignees": {"nodes": [{"login": "hubot"}]},
    }
    node.update(overrides)
    return node


def search_response(
    authored: list[dict[str, Any]] | None = None,
    assigned: list[dict[str, Any]] | None = None,
    review_requested: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "data": {
            "authored": {"nodes": authored or []},
            "assigned": {"nodes": assigned or []},
            "reviewRequested": {"nodes": review_requested or []},
            "rateLimit": {"limit": 5000, "remaining": 4999, "resetAt": "2026-01-10T16:30:00Z"},
        }
    }


class TestSyncPullRequests:
    async def test_merges_relations(
        self,
        github: FakeGitHub,
        client: ConditionalRequestClient,
        store: SyncStore,
        tracker: RateLimitTracker,
    ) -> None:
        github.json(
            "POST",
            "/graphql",
            search_response(
                authored=[pr_node("PR_1", 1)],
                assigned=[pr_node("PR_1", 1), pr_node("PR_2", 2)],
                review_requested=[pr_node("PR_3", 3, isDraft=True), {"__typename": "Issue"}],
            ),
        )
        sink = RecordingSink()

        result = await sync_pull_requests(client, store, sink)

        assert result.synced == 3
        assert result.errors == []

        first = store.get_pull_request("PR_1")
        assert first is not None
        assert (first.is_author, first.is_assignee, first.is_reviewer) == (True, True, False)
        assert first.labels == ["bug"]
        assert first.assignees == ["hubot"]
        assert first.repository_owner == "octocat"

        third = store.get_pull_request("PR_3")
        assert third is not None
        assert third.is_reviewer is True
        assert third.is_draft is True

        assert sink.events == [SyncEvent(SyncEventKind.PULL_REQUESTS)]
        assert tracker.remaining_quota(BudgetType.BULK) == 4999

    async def test_sends_search_variables(
        self,
        github: FakeGitHub,
        client: ConditionalRequestClient,
        store: SyncStore,
    ) -> None:
        github.json("POST", "/graphql", search_response())

        await sync_pull_requests(client, store)

        payload = json.loads(github.requests[0].content)
        assert payload["variables"] == SEARCH_VARIABLES
        assert "rateLimit" in payload["query"]

    async def test_keeps_detail_sync_state(
        self,
        github: FakeGitHub,
        client: ConditionalRequestClient,
        store: SyncStore,
    ) -> None:
        store.upsert_pull_request(make_pull_request(id="PR_1", number=1))
        store.set_head_sha("PR_1", "abc")
        store.mark_details_synced("PR_1", "2026-01-10T15:00:00+00:00")
        github.json("POST", "/graphql", search_response(authored=[pr_node("PR_1", 1, title="New")]))

        await sync_pull_requests(client, store)

        stored = store.get_pull_request("PR_1")
        assert stored is not None
        assert stored.title == "New"
        assert stored.head_sha == "abc"
        assert stored.details_synced_at == "2026-01-10T15:00:00+00:00"

    async def test_failed_query_is_reported(
        self,
        github: FakeGitHub,
        client: ConditionalRequestClient,
        store: SyncStore,
    ) -> None:
        github.json("POST", "/graphql", {"message": "Bad credentials"}, status=401)
        sink = RecordingSink()

        result = await sync_pull_requests(client, store, sink)

        assert result.synced == 0
        assert result.errors == [
            "Failed to fetch pull requests: GitHub API error: 401 - Bad credentials"
        ]
        assert store.list_pull_requests() == []
        assert sink.events == []
