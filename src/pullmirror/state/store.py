"""SQLite store for mirrored pull requests and their resources.

This module provides the SyncStore class that handles:
- Database initialization with schema migrations
- Typed upsert / soft-delete / query operations per resource table
- Pull request rows, including the head sha and detail-sync markers
- Raw ETag rows (see pullmirror.state.etags for the cache API)
- File permissions (chmod 600) on database creation
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import astuple, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from pullmirror.state.migrations import migrate_database
from pullmirror.state.models import (
    RUNNING_CHECK_STATES,
    CheckRow,
    PullRequestRow,
    SyncedRow,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=SyncedRow)


def _columns(row_type: type[SyncedRow]) -> list[str]:
    return [f.name for f in fields(row_type)]


class SyncStore:
    """SQLite-based persistence for the mirror.

    A single connection is shared by the process. Writes go through
    ``transaction()``, which nests: only the outermost block commits, so a
    reconciliation pass can group many upserts and soft-deletes atomically.

    The database file is created with chmod 600 for security.

    Example:
        >>> from pullmirror.paths import default_database_path
        >>> store = SyncStore(default_database_path())
        >>> store.list_active(CheckRow, pr_id)
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store and apply migrations.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path).expanduser().resolve()
        self._conn: sqlite3.Connection | None = None
        self._depth = 0

        self._ensure_database()

    def _ensure_database(self) -> None:
        """Create the database directory and file, then run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        is_new = not self.db_path.exists()

        conn = self._get_connection()
        migrate_database(conn)

        if is_new and self.db_path.exists():
            try:
                os.chmod(self.db_path, 0o600)  # noqa: PTH101
                logger.debug("Set database permissions to 600: %s", self.db_path)
            except OSError as e:
                logger.warning("Could not set database permissions: %s", e)

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection.

        Returns:
            SQLite connection with row factory set
        """
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for transactional operations.

        Nested blocks join the outermost transaction.

        Yields:
            The database connection

        Raises:
            Exception: Re-raises any exception after rollback
        """
        conn = self._get_connection()
        self._depth += 1
        try:
            yield conn
        except Exception:
            if self._depth == 1:
                conn.rollback()
            raise
        else:
            if self._depth == 1:
                conn.commit()
        finally:
            self._depth -= 1

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------------------------------
    # Synced Resource Rows
    # -------------------------------------------------------------------------

    def list_active(
        self,
        row_type: type[RowT],
        pull_request_id: str,
        **scope: Any,
    ) -> list[RowT]:
        """List rows that are not soft-deleted, in insertion order.

        Args:
            row_type: Row dataclass (selects the table)
            pull_request_id: Owning pull request
            **scope: Extra column filters, e.g. comment_type="issue"

        Returns:
            Active rows
        """
        return self._select(row_type, pull_request_id, scope, active_only=True)

    def list_all(
        self,
        row_type: type[RowT],
        pull_request_id: str,
        **scope: Any,
    ) -> list[RowT]:
        """List rows including soft-deleted ones, in insertion order."""
        return self._select(row_type, pull_request_id, scope, active_only=False)

    def _select(
        self,
        row_type: type[RowT],
        pull_request_id: str,
        scope: dict[str, Any],
        *,
        active_only: bool,
    ) -> list[RowT]:
        columns = _columns(row_type)
        unknown = set(scope) - set(columns)
        if unknown:
            msg = f"Unknown {row_type.TABLE} columns in scope: {sorted(unknown)}"
            raise ValueError(msg)

        clauses = ["pull_request_id = ?"]
        values: list[Any] = [pull_request_id]
        for column, value in scope.items():
            clauses.append(f"{column} = ?")
            values.append(value)
        if active_only:
            clauses.append("deleted_at IS NULL")

        cursor = self._get_connection().execute(
            f"SELECT {', '.join(columns)} FROM {row_type.TABLE} "  # noqa: S608
            f"WHERE {' AND '.join(clauses)} ORDER BY rowid",
            values,
        )
        return [row_type(**dict(row)) for row in cursor.fetchall()]

    def upsert(self, row: SyncedRow) -> None:
        """Insert or replace a row by local id."""
        self.upsert_many([row])

    def upsert_many(self, rows: Iterable[SyncedRow]) -> int:
        """Insert or replace rows by local id in one transaction.

        Returns:
            Number of rows written
        """
        count = 0
        with self.transaction() as conn:
            for row in rows:
                columns = _columns(type(row))
                placeholders = ", ".join("?" for _ in columns)
                update = ", ".join(
                    f"{column} = excluded.{column}" for column in columns if column != "id"
                )
                conn.execute(
                    f"INSERT INTO {row.TABLE} ({', '.join(columns)}) "  # noqa: S608
                    f"VALUES ({placeholders}) "
                    f"ON CONFLICT(id) DO UPDATE SET {update}",
                    astuple(row),
                )
                count += 1
        return count

    def soft_delete(self, row_type: type[SyncedRow], local_id: str, at: str) -> bool:
        """Mark a row deleted.

        Returns:
            True if an active row was marked
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {row_type.TABLE} SET deleted_at = ? "  # noqa: S608
                "WHERE id = ? AND deleted_at IS NULL",
                (at, local_id),
            )
            return cursor.rowcount > 0

    def count_active(self, row_type: type[SyncedRow], pull_request_id: str) -> int:
        """Count rows that are not soft-deleted for a pull request."""
        cursor = self._get_connection().execute(
            f"SELECT COUNT(*) FROM {row_type.TABLE} "  # noqa: S608
            "WHERE pull_request_id = ? AND deleted_at IS NULL",
            (pull_request_id,),
        )
        return cursor.fetchone()[0]

    def has_running_checks(self, pull_request_id: str) -> bool:
        """Whether any active check for the pull request is queued or in progress."""
        placeholders = ", ".join("?" for _ in RUNNING_CHECK_STATES)
        cursor = self._get_connection().execute(
            f"SELECT 1 FROM {CheckRow.TABLE} "  # noqa: S608
            f"WHERE pull_request_id = ? AND deleted_at IS NULL AND state IN ({placeholders}) "
            "LIMIT 1",
            (pull_request_id, *RUNNING_CHECK_STATES),
        )
        return cursor.fetchone() is not None

    # -------------------------------------------------------------------------
    # Pull Requests
    # -------------------------------------------------------------------------

    def get_pull_request(self, pull_request_id: str) -> PullRequestRow | None:
        """Load a pull request by its GitHub node id."""
        cursor = self._get_connection().execute(
            "SELECT * FROM pull_requests WHERE id = ?",
            (pull_request_id,),
        )
        row = cursor.fetchone()
        return PullRequestRow.from_record(row) if row is not None else None

    def upsert_pull_request(self, pull_request: PullRequestRow) -> None:
        """Insert or update a pull request.

        An existing head_sha or details_synced_at is kept when the incoming
        row has none, so list syncs do not erase detail-sync state.
        """
        record = pull_request.to_record()
        columns = list(record)
        preserved = {"head_sha", "details_synced_at"}
        update = ", ".join(
            (
                f"{column} = COALESCE(excluded.{column}, pull_requests.{column})"
                if column in preserved
                else f"{column} = excluded.{column}"
            )
            for column in columns
            if column != "id"
        )
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO pull_requests ({', '.join(columns)}) "  # noqa: S608
                f"VALUES ({', '.join('?' for _ in columns)}) "
                f"ON CONFLICT(id) DO UPDATE SET {update}",
                list(record.values()),
            )

    def list_pull_requests(self, *, state: str | None = None) -> list[PullRequestRow]:
        """List pull requests, most recently updated first.

        Args:
            state: Optional state filter (e.g. 'OPEN')
        """
        query = "SELECT * FROM pull_requests"
        values: tuple[Any, ...] = ()
        if state is not None:
            query += " WHERE state = ?"
            values = (state,)
        query += " ORDER BY updated_at DESC, number DESC"
        cursor = self._get_connection().execute(query, values)
        return [PullRequestRow.from_record(row) for row in cursor.fetchall()]

    def set_head_sha(self, pull_request_id: str, head_sha: str) -> None:
        """Persist the latest head commit seen for a pull request."""
        with self.transaction() as conn:
            conn.execute(
                "UPDATE pull_requests SET head_sha = ? WHERE id = ?",
                (head_sha, pull_request_id),
            )

    def mark_details_synced(self, pull_request_id: str, at: str) -> None:
        """Record a fully successful detail sync."""
        with self.transaction() as conn:
            conn.execute(
                "UPDATE pull_requests SET details_synced_at = ? WHERE id = ?",
                (at, pull_request_id),
            )

    # -------------------------------------------------------------------------
    # ETag Rows
    # -------------------------------------------------------------------------

    def get_etag_row(self, row_id: str) -> sqlite3.Row | None:
        """Load a raw etags row by its composite id."""
        cursor = self._get_connection().execute(
            "SELECT id, endpoint_type, resource_id, etag, last_modified, validated_at "
            "FROM etags WHERE id = ?",
            (row_id,),
        )
        return cursor.fetchone()

    def upsert_etag_row(
        self,
        row_id: str,
        endpoint_type: str,
        resource_id: str,
        etag: str,
        last_modified: str | None,
        validated_at: str,
    ) -> None:
        """Insert or replace an etags row (last write wins)."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO etags (id, endpoint_type, resource_id, etag, last_modified, validated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    etag = excluded.etag,
                    last_modified = excluded.last_modified,
                    validated_at = excluded.validated_at
                """,
                (row_id, endpoint_type, resource_id, etag, last_modified, validated_at),
            )

    def delete_etag_row(self, row_id: str) -> bool:
        """Delete one etags row. Returns True if it existed."""
        with self.transaction() as conn:
            return conn.execute("DELETE FROM etags WHERE id = ?", (row_id,)).rowcount > 0

    def delete_etag_rows(self, endpoint_type: str | None = None) -> int:
        """Delete etags rows for one endpoint type, or all of them.

        Returns:
            Number of rows deleted
        """
        with self.transaction() as conn:
            if endpoint_type is None:
                cursor = conn.execute("DELETE FROM etags")
            else:
                cursor = conn.execute(
                    "DELETE FROM etags WHERE endpoint_type = ?",
                    (endpoint_type,),
                )
            return cursor.rowcount

    def count_etag_rows(self) -> int:
        """Count stored validators."""
        return self._get_connection().execute("SELECT COUNT(*) FROM etags").fetchone()[0]
