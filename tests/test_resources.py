"""Tests for the per-kind fetchers (fetch, reconcile, remember validator)."""

from __future__ import annotations

import pytest

from conftest import (
    HEAD_SHA,
    PR_ID,
    FakeGitHub,
    check_run,
    check_runs,
    commit_payload,
    file_payload,
    issue_comment_payload,
    pull_payload,
    reaction_payload,
    repo_path,
    respond,
    review_comment_payload,
    review_payload,
)
from pullmirror.github import GitHubAPIError
from pullmirror.state import (
    CheckRow,
    CommentReactionRow,
    CommentRow,
    CommitRow,
    ETagCache,
    ModifiedFileRow,
    PullRequestRow,
    ReviewRow,
    SyncStore,
)
from pullmirror.sync import PullRequestSyncer, SyncKind
from pullmirror.sync.resources import (
    CHECKS_ENDPOINT,
    ISSUE_COMMENTS_ENDPOINT,
    PR_HEAD_SHA_ENDPOINT,
    REACTIONS_ENDPOINT,
    REVIEW_COMMENTS_ENDPOINT,
)

PULL = repo_path("pulls/42")
CHECKS = repo_path(f"commits/{HEAD_SHA}/check-runs")
ISSUE_COMMENTS = repo_path("issues/42/comments")
REVIEW_COMMENTS = repo_path("pulls/42/comments")

pytestmark = pytest.mark.asyncio


def serve_checks(github: FakeGitHub, *runs: dict) -> None:
    github.json("GET", PULL, pull_payload(), etag='"pull-v1"')
    github.json("GET", CHECKS, check_runs(*runs), etag='"checks-v1"')


class TestSyncChecks:
    async def test_fetches_head_sha_then_checks(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        etags: ETagCache,
        pull_request: PullRequestRow,
    ) -> None:
        serve_checks(github, check_run(1, "build"), check_run(2, "lint", status="in_progress"))

        result = await syncer.sync_checks(pull_request)

        assert result.created == 2
        rows = store.list_active(CheckRow, PR_ID)
        assert [(row.name, row.state) for row in rows] == [
            ("build", "completed"),
            ("lint", "in_progress"),
        ]
        assert store.get_pull_request(PR_ID).head_sha == HEAD_SHA  # type: ignore[union-attr]
        assert etags.get(PR_HEAD_SHA_ENDPOINT, PR_ID).validator == '"pull-v1"'  # type: ignore[union-attr]
        assert etags.get(CHECKS_ENDPOINT, PR_ID).validator == '"checks-v1"'  # type: ignore[union-attr]

    async def test_second_sync_is_not_modified(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        serve_checks(github, check_run(1, "build"))
        await syncer.sync_checks(pull_request)

        result = await syncer.sync_checks(pull_request)

        assert result.not_modified is True
        assert store.count_active(CheckRow, PR_ID) == 1
        conditional = github.requests_to(CHECKS)[-1]
        assert conditional.headers["if-none-match"] == '"checks-v1"'
        assert github.requests_to(PULL)[-1].headers["if-none-match"] == '"pull-v1"'

    async def test_unknown_head_sha_skips_checks(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        etags: ETagCache,
        pull_request: PullRequestRow,
    ) -> None:
        etags.set(PR_HEAD_SHA_ENDPOINT, PR_ID, '"pull-v1"')
        github.json("GET", PULL, pull_payload(), etag='"pull-v1"')

        result = await syncer.sync_checks(pull_request)

        assert result.not_modified is True
        assert github.requests_to(CHECKS) == []

    async def test_checks_error_keeps_old_validator(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        etags: ETagCache,
        pull_request: PullRequestRow,
    ) -> None:
        github.json("GET", PULL, pull_payload(), etag='"pull-v1"')
        github.json("GET", CHECKS, {"message": "Server Error"}, status=500)

        with pytest.raises(GitHubAPIError):
            await syncer.sync_checks(pull_request)

        assert etags.get(CHECKS_ENDPOINT, PR_ID) is None

    async def test_new_head_commit_replaces_checks(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        serve_checks(github, check_run(1, "build"))
        await syncer.sync_checks(pull_request)

        new_sha = "f" * 40
        github.json("GET", PULL, pull_payload(new_sha), etag='"pull-v2"')
        github.json(
            "GET",
            repo_path(f"commits/{new_sha}/check-runs"),
            check_runs(check_run(9, "build", status="queued", head_sha=new_sha)),
            etag='"checks-v2"',
        )

        await syncer.sync_checks(pull_request)

        rows = store.list_active(CheckRow, PR_ID)
        assert [(row.remote_id, row.commit_sha) for row in rows] == [("9", new_sha)]
        assert store.has_running_checks(PR_ID) is True


class TestListings:
    async def test_sync_commits_files_reviews(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        github.json("GET", repo_path("pulls/42/commits"), [commit_payload("a1", "Fix\r\n\r\n\r\nbug")])
        github.json("GET", repo_path("pulls/42/files"), [file_payload("src/app.py")])
        github.json("GET", repo_path("pulls/42/reviews"), [review_payload("PRR_1")])

        await syncer.sync_kind(SyncKind.COMMITS, pull_request)
        await syncer.sync_kind(SyncKind.FILES, pull_request)
        await syncer.sync_kind(SyncKind.REVIEWS, pull_request)

        commit = store.list_active(CommitRow, PR_ID)[0]
        assert commit.hash == "a1"
        assert commit.message == "Fix\n\nbug"
        assert commit.author_login == "octocat"

        modified = store.list_active(ModifiedFileRow, PR_ID)[0]
        assert (modified.filename, modified.additions, modified.deletions) == ("src/app.py", 3, 1)

        review = store.list_active(ReviewRow, PR_ID)[0]
        assert (review.remote_id, review.state, review.author_login) == (
            "PRR_1",
            "APPROVED",
            "reviewer1",
        )

    async def test_removed_file_is_soft_deleted(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        path = repo_path("pulls/42/files")
        github.add(
            "GET",
            path,
            respond([file_payload("a.py"), file_payload("b.py")], etag='"f1"'),
            respond([file_payload("a.py")], etag='"f2"'),
        )

        await syncer.sync_files(pull_request)
        result = await syncer.sync_files(pull_request)

        assert result.deleted == 1
        assert [row.filename for row in store.list_active(ModifiedFileRow, PR_ID)] == ["a.py"]


class TestSyncComments:
    async def test_issue_and_review_comments_with_reactions(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        etags: ETagCache,
        pull_request: PullRequestRow,
    ) -> None:
        github.json(
            "GET",
            ISSUE_COMMENTS,
            [issue_comment_payload(1, reactions=2), issue_comment_payload(2)],
            etag='"ic-v1"',
        )
        github.json(
            "GET",
            REVIEW_COMMENTS,
            [review_comment_payload(10, "@@ -5,2 +5,2 @@\n-old line")],
            etag='"rc-v1"',
        )
        github.json(
            "GET",
            repo_path("issues/comments/1/reactions"),
            [reaction_payload(100, "heart"), reaction_payload(101, "+1", login=None)],
            etag='"re-v1"',
        )

        result = await syncer.sync_comments(pull_request)

        assert result.created == 3
        issue = store.list_active(CommentRow, PR_ID, comment_type="issue")
        review = store.list_active(CommentRow, PR_ID, comment_type="review")
        assert [row.remote_id for row in issue] == ["IC_1", "IC_2"]
        assert [(row.remote_id, row.line, row.original_line) for row in review] == [
            ("RC_10", None, 10)
        ]

        reactions = store.list_active(CommentReactionRow, PR_ID)
        assert [(row.comment_id, row.content) for row in reactions] == [(issue[0].id, "heart")]
        assert github.requests_to(repo_path("issues/comments/2/reactions")) == []

        assert etags.get(ISSUE_COMMENTS_ENDPOINT, PR_ID) is not None
        assert etags.get(REVIEW_COMMENTS_ENDPOINT, PR_ID) is not None
        assert etags.get(REACTIONS_ENDPOINT, issue[0].id).validator == '"re-v1"'  # type: ignore[union-attr]

    async def test_not_modified_issue_comments_keep_review_comments(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        github.json("GET", ISSUE_COMMENTS, [issue_comment_payload(1)], etag='"ic-v1"')
        github.add(
            "GET",
            REVIEW_COMMENTS,
            respond([review_comment_payload(10, "@@ -1 +1 @@\n+x")], etag='"rc-v1"'),
            respond([], etag='"rc-v2"'),
        )
        await syncer.sync_comments(pull_request)

        result = await syncer.sync_comments(pull_request)

        assert result.deleted == 1
        assert [row.remote_id for row in store.list_active(CommentRow, PR_ID)] == ["IC_1"]

    async def test_reactions_cleared_when_count_drops_to_zero(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        store: SyncStore,
        pull_request: PullRequestRow,
    ) -> None:
        github.add(
            "GET",
            ISSUE_COMMENTS,
            respond([issue_comment_payload(1, reactions=1)], etag='"ic-v1"'),
            respond([issue_comment_payload(1, "edited", reactions=0)], etag='"ic-v2"'),
        )
        github.json("GET", REVIEW_COMMENTS, [])
        github.json("GET", repo_path("issues/comments/1/reactions"), [reaction_payload(100)])

        await syncer.sync_comments(pull_request)
        assert store.count_active(CommentReactionRow, PR_ID) == 1

        await syncer.sync_comments(pull_request)

        assert store.count_active(CommentReactionRow, PR_ID) == 0
        assert len(github.requests_to(repo_path("issues/comments/1/reactions"))) == 1

    async def test_reaction_failure_keeps_issue_comment_validator_unset(
        self,
        github: FakeGitHub,
        syncer: PullRequestSyncer,
        etags: ETagCache,
        pull_request: PullRequestRow,
    ) -> None:
        github.json("GET", ISSUE_COMMENTS, [issue_comment_payload(1, reactions=1)], etag='"ic-v1"')
        github.json(
            "GET",
            repo_path("issues/comments/1/reactions"),
            {"message": "Server Error"},
            status=502,
        )

        with pytest.raises(GitHubAPIError):
            await syncer.sync_comments(pull_request)

        assert etags.get(ISSUE_COMMENTS_ENDPOINT, PR_ID) is None
