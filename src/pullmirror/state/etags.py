"""Durable cache of HTTP validators keyed by endpoint kind and resource.

A stored ETag lets the next fetch of the same endpoint send
``If-None-Match``; GitHub answers 304 without charging quota when nothing
changed. Entries never expire on their own: a validator is only replaced
by a newer one or removed explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pullmirror.state.models import format_timestamp, utc_now

if TYPE_CHECKING:
    from pullmirror.state.store import SyncStore

logger = logging.getLogger(__name__)


def etag_row_id(endpoint_kind: str, resource_id: str) -> str:
    """Composite primary key of an etags row."""
    return f"{endpoint_kind}:{resource_id}"


@dataclass(frozen=True)
class ETagEntry:
    """Stored validator for one endpoint of one resource.

    Attributes:
        endpoint_kind: Endpoint family (e.g. 'checks', 'pr-head-sha')
        resource_id: Resource the endpoint was fetched for (pull request id)
        validator: ETag header value
        last_modified: Last-Modified header value, if the response had one
        validated_at: When the validator was stored (ISO-8601 UTC)
    """

    endpoint_kind: str
    resource_id: str
    validator: str
    last_modified: str | None
    validated_at: str


class ETagCache:
    """ETag cache backed by the etags table of a SyncStore."""

    def __init__(self, store: SyncStore) -> None:
        self._store = store

    def get(self, endpoint_kind: str, resource_id: str) -> ETagEntry | None:
        """Look up the validator for an endpoint of a resource."""
        row = self._store.get_etag_row(etag_row_id(endpoint_kind, resource_id))
        if row is None:
            return None
        return ETagEntry(
            endpoint_kind=row["endpoint_type"],
            resource_id=row["resource_id"],
            validator=row["etag"],
            last_modified=row["last_modified"],
            validated_at=row["validated_at"],
        )

    def set(
        self,
        endpoint_kind: str,
        resource_id: str,
        validator: str,
        last_modified: str | None = None,
    ) -> ETagEntry:
        """Store a validator, replacing any previous one."""
        entry = ETagEntry(
            endpoint_kind=endpoint_kind,
            resource_id=resource_id,
            validator=validator,
            last_modified=last_modified,
            validated_at=format_timestamp(utc_now()) or "",
        )
        self._store.upsert_etag_row(
            etag_row_id(endpoint_kind, resource_id),
            endpoint_kind,
            resource_id,
            validator,
            last_modified,
            entry.validated_at,
        )
        return entry

    def delete(self, endpoint_kind: str, resource_id: str) -> bool:
        """Forget one validator. Returns True if it existed."""
        return self._store.delete_etag_row(etag_row_id(endpoint_kind, resource_id))

    def delete_by_endpoint_kind(self, endpoint_kind: str) -> int:
        """Forget every validator of one endpoint kind, forcing full refetches."""
        removed = self._store.delete_etag_rows(endpoint_kind)
        logger.info("Cleared %d %s validators", removed, endpoint_kind)
        return removed

    def delete_all(self) -> int:
        """Forget every validator."""
        removed = self._store.delete_etag_rows()
        logger.info("Cleared %d validators", removed)
        return removed

    def count(self) -> int:
        """Number of stored validators."""
        return self._store.count_etag_rows()
