"""Generic fetch-diff-upsert-soft-delete reconciliation.

The reconciler converges the stored rows of one resource kind for one pull
request onto a complete remote listing:

1. Load active rows (optionally scoped, e.g. by comment type) and index
   them by remote identity.
2. Map every remote item to a row, reusing the local id of a known identity.
3. Drop whatever the kind's post-pass hook rejects.
4. Upsert the remaining rows in one transaction.
5. Soft-delete active rows whose identity did not appear, and active rows
   the post-pass rejected.

A not-modified listing leaves the store untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic

from pullmirror.state.models import format_timestamp, new_local_id, utc_now
from pullmirror.sync.kinds import RowContext, RowT

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from pullmirror.state.store import SyncStore
    from pullmirror.sync.kinds import ResourceKind

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Counts from one reconciliation pass.

    Attributes:
        created: Identities stored for the first time
        updated: Known identities written again
        deleted: Rows soft-deleted because their identity vanished
        duplicates: Rows the post-pass hook rejected (never stored, or soft-deleted
            if they were active)
        not_modified: True when the listing was a 304 and nothing was touched
        rows: Rows left active by this pass, in payload order
    """

    created: int = 0
    updated: int = 0
    deleted: int = 0
    duplicates: int = 0
    not_modified: bool = False
    rows: list[Any] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True when rows were created or soft-deleted because they vanished."""
        return bool(self.created or self.deleted)

    def merged(self, other: ReconcileResult) -> ReconcileResult:
        """Combine the counts of two passes (e.g. issue and review comments)."""
        return ReconcileResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            deleted=self.deleted + other.deleted,
            duplicates=self.duplicates + other.duplicates,
            not_modified=self.not_modified and other.not_modified,
            rows=[*self.rows, *other.rows],
        )


class Reconciler(Generic[RowT]):
    """Applies one ResourceKind's adapter to a store."""

    def __init__(self, store: SyncStore, kind: ResourceKind[RowT]) -> None:
        self._store = store
        self._kind = kind

    def reconcile(
        self,
        pull_request_id: str,
        items: Iterable[dict[str, Any]],
        *,
        not_modified: bool = False,
        scope: Mapping[str, Any] | None = None,
        extras: Mapping[str, Any] | None = None,
    ) -> ReconcileResult:
        """Converge stored rows onto a complete remote listing.

        Args:
            pull_request_id: Owning pull request.
            items: Every remote item of the listing, in payload order.
            not_modified: The listing was a 304; nothing is read or written.
            scope: Column filters selecting the rows this listing covers.
                Scope values are also handed to the mapper.
            extras: Additional values for the mapper.

        Returns:
            ReconcileResult with the pass's counts.
        """
        if not_modified:
            return ReconcileResult(not_modified=True)

        scope = dict(scope or {})
        context = {**scope, **(extras or {})}
        now = format_timestamp(utc_now()) or ""
        result = ReconcileResult()

        with self._store.transaction():
            existing = self._store.list_active(self._kind.row_type, pull_request_id, **scope)
            known = {row.remote_id for row in existing}
            index: dict[str, RowT] = {row.remote_id: row for row in existing}
            seen: set[str] = set()
            processed: dict[str, RowT] = {}

            for item in items:
                remote_id = self._kind.identity(item)
                if remote_id is None:
                    logger.debug("Skipping %s item without identity", self._kind.name)
                    continue

                current = index.get(remote_id)
                row = self._kind.mapper(
                    item,
                    RowContext(
                        local_id=current.id if current else new_local_id(),
                        pull_request_id=pull_request_id,
                        synced_at=now,
                        extras=context,
                    ),
                )
                index[remote_id] = row
                seen.add(remote_id)
                processed[row.id] = row

            # Suppressed rows are never written; stored ones are retired below.
            suppressed: set[str] = set()
            if self._kind.post_pass is not None:
                suppressed = {row.id for row in self._kind.post_pass(list(processed.values()))}
            kept = [row for row in processed.values() if row.id not in suppressed]

            self._store.upsert_many(kept)
            for row in kept:
                if row.remote_id in known:
                    result.updated += 1
                else:
                    result.created += 1

            retired = 0
            for row in existing:
                if row.remote_id not in seen:
                    if self._store.soft_delete(self._kind.row_type, row.id, now):
                        result.deleted += 1
                elif row.id in suppressed and self._store.soft_delete(
                    self._kind.row_type, row.id, now
                ):
                    retired += 1
            result.duplicates = len(suppressed)

        result.rows = kept

        if result.changed or retired:
            logger.debug(
                "Reconciled %s for %s: %d created, %d updated, %d deleted, %d duplicates",
                self._kind.name,
                pull_request_id,
                result.created,
                result.updated,
                result.deleted,
                result.duplicates,
            )
        return result
