"""Schema migrations for the mirror database.

This module handles database schema versioning and migrations:
- Tracks current schema version
- Applies migrations in order
- Supports fresh database initialization

Every synced resource table shares the same bookkeeping columns: a local
``id`` (UUID4), the ``remote_id`` GitHub uses, the owning
``pull_request_id``, ``synced_at`` and a nullable ``deleted_at``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Callable

    MigrationFunc = Callable[[sqlite3.Connection], None]

logger = logging.getLogger(__name__)

# Current schema version - increment when adding migrations
CURRENT_SCHEMA_VERSION = 1

_V1_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS pull_requests (
        id TEXT PRIMARY KEY,
        number INTEGER NOT NULL,
        title TEXT NOT NULL,
        body TEXT,
        state TEXT NOT NULL,
        url TEXT NOT NULL,
        repository_owner TEXT NOT NULL,
        repository_name TEXT NOT NULL,
        author_login TEXT,
        author_avatar_url TEXT,
        is_draft INTEGER NOT NULL DEFAULT 0,
        is_author INTEGER NOT NULL DEFAULT 0,
        is_assignee INTEGER NOT NULL DEFAULT 0,
        is_reviewer INTEGER NOT NULL DEFAULT 0,
        labels TEXT NOT NULL DEFAULT '[]',
        assignees TEXT NOT NULL DEFAULT '[]',
        created_at TEXT,
        updated_at TEXT,
        closed_at TEXT,
        merged_at TEXT,
        head_sha TEXT,
        synced_at TEXT NOT NULL,
        details_synced_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checks (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        name TEXT NOT NULL,
        state TEXT NOT NULL,
        conclusion TEXT,
        commit_sha TEXT NOT NULL,
        suite_name TEXT,
        duration_in_seconds INTEGER,
        details_url TEXT,
        message TEXT,
        url TEXT,
        remote_created_at TEXT,
        remote_updated_at TEXT,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commits (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        hash TEXT NOT NULL,
        message TEXT NOT NULL,
        url TEXT,
        author_login TEXT,
        author_avatar_url TEXT,
        remote_created_at TEXT,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS modified_files (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        file_path TEXT NOT NULL,
        status TEXT NOT NULL,
        additions INTEGER NOT NULL DEFAULT 0,
        deletions INTEGER NOT NULL DEFAULT 0,
        changes INTEGER NOT NULL DEFAULT 0,
        diff_hunk TEXT,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        state TEXT NOT NULL,
        body TEXT,
        url TEXT,
        author_login TEXT,
        author_avatar_url TEXT,
        remote_submitted_at TEXT,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        comment_type TEXT NOT NULL,
        remote_numeric_id INTEGER,
        body TEXT,
        path TEXT,
        line INTEGER,
        original_line INTEGER,
        diff_hunk TEXT,
        commit_id TEXT,
        original_commit_id TEXT,
        remote_review_id INTEGER,
        parent_remote_id INTEGER,
        user_login TEXT,
        user_avatar_url TEXT,
        url TEXT,
        remote_created_at TEXT,
        remote_updated_at TEXT,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comment_reactions (
        id TEXT PRIMARY KEY,
        remote_id TEXT NOT NULL,
        pull_request_id TEXT NOT NULL,
        comment_id TEXT NOT NULL,
        content TEXT NOT NULL,
        user_login TEXT,
        user_id INTEGER,
        synced_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS etags (
        id TEXT PRIMARY KEY,
        endpoint_type TEXT NOT NULL,
        resource_id TEXT NOT NULL,
        etag TEXT NOT NULL,
        last_modified TEXT,
        validated_at TEXT NOT NULL
    )
    """,
)

_V1_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_checks_pr ON checks(pull_request_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_commits_pr ON commits(pull_request_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_modified_files_pr ON modified_files(pull_request_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_reviews_pr ON reviews(pull_request_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_comments_pr ON comments(pull_request_id, comment_type, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_comment_reactions_comment ON comment_reactions(comment_id, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_etags_endpoint ON etags(endpoint_type)",
)


def _migration_v1(conn: sqlite3.Connection) -> None:
    """Initial schema: v0 -> v1.

    Creates schema_version, pull_requests, one table per synced resource
    kind and the etags table.
    """
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    for statement in _V1_TABLES:
        cursor.execute(statement)
    for statement in _V1_INDEXES:
        cursor.execute(statement)

    cursor.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, datetime('now'))",
        (1,),
    )

    conn.commit()
    logger.info("Applied migration v1: mirror schema")


# Registry of migrations keyed by target version
MIGRATIONS: dict[int, MigrationFunc] = {
    1: _migration_v1,
}


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version from the database.

    Returns:
        Current schema version, or 0 if not initialized
    """
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()
    if row is None:
        return 0

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def migrate_database(
    conn: sqlite3.Connection,
    target_version: int | None = None,
) -> int:
    """Apply all pending migrations to reach the target version.

    Args:
        conn: SQLite database connection
        target_version: Version to migrate to (default: CURRENT_SCHEMA_VERSION)

    Returns:
        The final schema version after migrations

    Raises:
        ValueError: If target_version is invalid or a migration is missing
    """
    if target_version is None:
        target_version = CURRENT_SCHEMA_VERSION

    if target_version < 0 or target_version > CURRENT_SCHEMA_VERSION:
        msg = f"Invalid target version: {target_version} (current max: {CURRENT_SCHEMA_VERSION})"
        raise ValueError(msg)

    current_version = get_schema_version(conn)
    if current_version >= target_version:
        return current_version

    logger.info("Migrating database from v%d to v%d", current_version, target_version)

    for version in range(current_version + 1, target_version + 1):
        migration = MIGRATIONS.get(version)
        if migration is None:
            msg = f"No migration found for version {version}"
            raise ValueError(msg)
        migration(conn)

    return target_version
