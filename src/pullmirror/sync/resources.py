"""Per-kind fetchers that feed the reconciler.

Every fetch follows the same steps: look up the stored validator, fetch
the listing conditionally, reconcile it, and only then store the new
validator. A failed reconciliation therefore leaves the old validator in
place and the next fetch sees the listing again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pullmirror.sync.kinds import (
    CHECKS,
    COMMENTS,
    COMMITS,
    FILES,
    REACTIONS,
    REVIEWS,
    CommentType,
    SyncKind,
)
from pullmirror.sync.reconciler import Reconciler, ReconcileResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from pullmirror.github.client import ConditionalRequestClient, ConditionalResult
    from pullmirror.state.etags import ETagCache
    from pullmirror.state.models import PullRequestRow
    from pullmirror.state.store import SyncStore
    from pullmirror.sync.kinds import ResourceKind

    AfterReconcile = Callable[[list[dict[str, Any]], ReconcileResult], Awaitable[None]]

logger = logging.getLogger(__name__)

# ETag endpoint kinds
PR_HEAD_SHA_ENDPOINT = "pr-head-sha"
CHECKS_ENDPOINT = "checks"
COMMITS_ENDPOINT = "commits"
FILES_ENDPOINT = "files"
REVIEWS_ENDPOINT = "reviews"
ISSUE_COMMENTS_ENDPOINT = "issue_comments"
REVIEW_COMMENTS_ENDPOINT = "review_comments"
REACTIONS_ENDPOINT = "comment_reactions"

ENDPOINT_KINDS = (
    PR_HEAD_SHA_ENDPOINT,
    CHECKS_ENDPOINT,
    COMMITS_ENDPOINT,
    FILES_ENDPOINT,
    REVIEWS_ENDPOINT,
    ISSUE_COMMENTS_ENDPOINT,
    REVIEW_COMMENTS_ENDPOINT,
    REACTIONS_ENDPOINT,
)

PULL_ROUTE = "GET /repos/{owner}/{repo}/pulls/{pull_number}"
CHECK_RUNS_ROUTE = "GET /repos/{owner}/{repo}/commits/{ref}/check-runs"
COMMITS_ROUTE = "GET /repos/{owner}/{repo}/pulls/{pull_number}/commits"
FILES_ROUTE = "GET /repos/{owner}/{repo}/pulls/{pull_number}/files"
REVIEWS_ROUTE = "GET /repos/{owner}/{repo}/pulls/{pull_number}/reviews"
ISSUE_COMMENTS_ROUTE = "GET /repos/{owner}/{repo}/issues/{issue_number}/comments"
REVIEW_COMMENTS_ROUTE = "GET /repos/{owner}/{repo}/pulls/{pull_number}/comments"
REACTIONS_ROUTE = "GET /repos/{owner}/{repo}/issues/comments/{comment_id}/reactions"


class PullRequestSyncer:
    """Fetches and reconciles the sub-resources of pull requests."""

    def __init__(
        self,
        client: ConditionalRequestClient,
        store: SyncStore,
        etags: ETagCache,
    ) -> None:
        self._client = client
        self._store = store
        self._etags = etags

    @property
    def store(self) -> SyncStore:
        return self._store

    async def sync_kind(self, kind: SyncKind, pull_request: PullRequestRow) -> ReconcileResult:
        """Sync one resource kind of a pull request."""
        handlers = {
            SyncKind.CHECKS: self.sync_checks,
            SyncKind.COMMITS: self.sync_commits,
            SyncKind.FILES: self.sync_files,
            SyncKind.REVIEWS: self.sync_reviews,
            SyncKind.COMMENTS: self.sync_comments,
        }
        return await handlers[SyncKind(kind)](pull_request)

    async def _sync_listing(
        self,
        endpoint: str,
        resource_id: str,
        route: str,
        params: Mapping[str, Any],
        kind: ResourceKind[Any],
        pull_request_id: str,
        *,
        items_key: str | None = None,
        scope: Mapping[str, Any] | None = None,
        extras: Mapping[str, Any] | None = None,
        after_reconcile: AfterReconcile | None = None,
    ) -> ReconcileResult:
        cached = self._etags.get(endpoint, resource_id)
        listing = await self._client.paginate(
            route,
            params,
            items_key=items_key,
            validator=cached.validator if cached else None,
            last_modified=cached.last_modified if cached else None,
        )
        items = listing.data or []

        result = Reconciler(self._store, kind).reconcile(
            pull_request_id,
            items,
            not_modified=listing.not_modified,
            scope=scope,
            extras=extras,
        )
        if after_reconcile is not None and not listing.not_modified:
            await after_reconcile(items, result)

        self._remember(endpoint, resource_id, listing)
        return result

    def _remember(self, endpoint: str, resource_id: str, result: ConditionalResult) -> None:
        if result.not_modified or not result.validator:
            return
        self._etags.set(endpoint, resource_id, result.validator, result.last_modified)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def _resolve_head_sha(self, pull_request: PullRequestRow) -> str | None:
        cached = self._etags.get(PR_HEAD_SHA_ENDPOINT, pull_request.id)
        response = await self._client.request(
            PULL_ROUTE,
            pull_request.repo_params,
            validator=cached.validator if cached else None,
            last_modified=cached.last_modified if cached else None,
        )

        if response.not_modified:
            stored = self._store.get_pull_request(pull_request.id)
            return stored.head_sha if stored else pull_request.head_sha

        head_sha = ((response.data or {}).get("head") or {}).get("sha")
        if head_sha:
            self._store.set_head_sha(pull_request.id, head_sha)
            self._remember(PR_HEAD_SHA_ENDPOINT, pull_request.id, response)
        return head_sha

    async def sync_checks(self, pull_request: PullRequestRow) -> ReconcileResult:
        """Sync check runs of the pull request's head commit.

        When the head commit is unknown (a 304 with nothing stored) the sync
        is skipped without touching any rows.
        """
        head_sha = await self._resolve_head_sha(pull_request)
        if not head_sha:
            logger.info(
                "No head commit known for %s#%d, skipping checks",
                pull_request.repository_name,
                pull_request.number,
            )
            return ReconcileResult(not_modified=True)

        return await self._sync_listing(
            CHECKS_ENDPOINT,
            pull_request.id,
            CHECK_RUNS_ROUTE,
            {
                "owner": pull_request.repository_owner,
                "repo": pull_request.repository_name,
                "ref": head_sha,
            },
            CHECKS,
            pull_request.id,
            items_key="check_runs",
            extras={"commit_sha": head_sha},
        )

    # -------------------------------------------------------------------------
    # Commits, files, reviews
    # -------------------------------------------------------------------------

    async def sync_commits(self, pull_request: PullRequestRow) -> ReconcileResult:
        return await self._sync_listing(
            COMMITS_ENDPOINT,
            pull_request.id,
            COMMITS_ROUTE,
            pull_request.repo_params,
            COMMITS,
            pull_request.id,
        )

    async def sync_files(self, pull_request: PullRequestRow) -> ReconcileResult:
        return await self._sync_listing(
            FILES_ENDPOINT,
            pull_request.id,
            FILES_ROUTE,
            pull_request.repo_params,
            FILES,
            pull_request.id,
        )

    async def sync_reviews(self, pull_request: PullRequestRow) -> ReconcileResult:
        return await self._sync_listing(
            REVIEWS_ENDPOINT,
            pull_request.id,
            REVIEWS_ROUTE,
            pull_request.repo_params,
            REVIEWS,
            pull_request.id,
        )

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def sync_comments(self, pull_request: PullRequestRow) -> ReconcileResult:
        """Sync issue comments (with reactions) and review comments.

        The two lists come from different endpoints and are reconciled in
        separate scopes, so a 304 on one never deletes the other's rows.
        """

        async def sync_reactions(items: list[dict[str, Any]], result: ReconcileResult) -> None:
            await self._sync_reactions(pull_request, items, result)

        issue = await self._sync_listing(
            ISSUE_COMMENTS_ENDPOINT,
            pull_request.id,
            ISSUE_COMMENTS_ROUTE,
            {
                "owner": pull_request.repository_owner,
                "repo": pull_request.repository_name,
                "issue_number": pull_request.number,
            },
            COMMENTS,
            pull_request.id,
            scope={"comment_type": CommentType.ISSUE.value},
            after_reconcile=sync_reactions,
        )
        review = await self._sync_listing(
            REVIEW_COMMENTS_ENDPOINT,
            pull_request.id,
            REVIEW_COMMENTS_ROUTE,
            pull_request.repo_params,
            COMMENTS,
            pull_request.id,
            scope={"comment_type": CommentType.REVIEW.value},
        )
        return issue.merged(review)

    async def _sync_reactions(
        self,
        pull_request: PullRequestRow,
        items: list[dict[str, Any]],
        comments: ReconcileResult,
    ) -> None:
        local_ids = {row.remote_id: row.id for row in comments.rows}
        reconciler = Reconciler(self._store, REACTIONS)

        for item in items:
            comment_id = local_ids.get(item.get("node_id") or str(item.get("id")))
            if comment_id is None:
                continue
            scope = {"comment_id": comment_id}
            total = ((item.get("reactions") or {}).get("total_count")) or 0

            if total == 0:
                # The comment listing says there are none; drop any stored ones.
                reconciler.reconcile(pull_request.id, [], scope=scope)
                continue

            await self._sync_listing(
                REACTIONS_ENDPOINT,
                comment_id,
                REACTIONS_ROUTE,
                {
                    "owner": pull_request.repository_owner,
                    "repo": pull_request.repository_name,
                    "comment_id": item["id"],
                },
                REACTIONS,
                pull_request.id,
                scope=scope,
            )

