"""Tests for the persistent ETag cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

from freezegun import freeze_time

from pullmirror.state import ETagCache, SyncStore
from pullmirror.state.etags import etag_row_id

if TYPE_CHECKING:
    from pathlib import Path


def test_row_id_combines_kind_and_resource() -> None:
    assert etag_row_id("checks", "PR_1") == "checks:PR_1"


class TestETagCache:
    def test_get_missing_returns_none(self, etags: ETagCache) -> None:
        assert etags.get("checks", "PR_1") is None

    @freeze_time("2026-01-10T15:30:00Z")
    def test_set_then_get(self, etags: ETagCache) -> None:
        etags.set("checks", "PR_1", 'W/"abc"', "Sat, 10 Jan 2026 15:00:00 GMT")

        entry = etags.get("checks", "PR_1")

        assert entry is not None
        assert entry.endpoint_kind == "checks"
        assert entry.resource_id == "PR_1"
        assert entry.validator == 'W/"abc"'
        assert entry.last_modified == "Sat, 10 Jan 2026 15:00:00 GMT"
        assert entry.validated_at == "2026-01-10T15:30:00+00:00"

    def test_set_replaces_previous_validator(self, etags: ETagCache) -> None:
        etags.set("checks", "PR_1", '"one"', "earlier")
        etags.set("checks", "PR_1", '"two"')

        entry = etags.get("checks", "PR_1")

        assert entry is not None
        assert entry.validator == '"two"'
        assert entry.last_modified is None
        assert etags.count() == 1

    def test_keys_are_per_kind_and_resource(self, etags: ETagCache) -> None:
        etags.set("checks", "PR_1", '"a"')
        etags.set("commits", "PR_1", '"b"')
        etags.set("checks", "PR_2", '"c"')

        assert etags.get("checks", "PR_1").validator == '"a"'  # type: ignore[union-attr]
        assert etags.get("commits", "PR_1").validator == '"b"'  # type: ignore[union-attr]
        assert etags.get("checks", "PR_2").validator == '"c"'  # type: ignore[union-attr]

    def test_delete(self, etags: ETagCache) -> None:
        etags.set("files", "PR_1", '"a"')

        assert etags.delete("files", "PR_1") is True
        assert etags.delete("files", "PR_1") is False
        assert etags.get("files", "PR_1") is None

    def test_delete_by_endpoint_kind(self, etags: ETagCache) -> None:
        etags.set("checks", "PR_1", '"a"')
        etags.set("checks", "PR_2", '"b"')
        etags.set("reviews", "PR_1", '"c"')

        assert etags.delete_by_endpoint_kind("checks") == 2
        assert etags.get("checks", "PR_1") is None
        assert etags.get("reviews", "PR_1") is not None

    def test_delete_all(self, etags: ETagCache) -> None:
        etags.set("checks", "PR_1", '"a"')
        etags.set("reviews", "PR_1", '"b"')

        assert etags.delete_all() == 2
        assert etags.count() == 0

    def test_entries_survive_reopen(self, test_db_path: Path) -> None:
        first = SyncStore(test_db_path)
        ETagCache(first).set("pr-head-sha", "PR_1", '"sha-etag"')
        first.close()

        second = SyncStore(test_db_path)
        try:
            entry = ETagCache(second).get("pr-head-sha", "PR_1")
        finally:
            second.close()

        assert entry is not None
        assert entry.validator == '"sha-etag"'
