"""State module for pullmirror.

This module provides SQLite-based persistence for:
- Pull requests and their checks, commits, files, reviews and comments
- Soft-deleted rows (deleted_at) so removed remote items stay traceable
- HTTP validators (ETags) for conditional requests

Usage:
    from pullmirror.state import SyncStore, ETagCache
    from pullmirror.paths import default_database_path

    store = SyncStore(default_database_path())  # XDG data path
    etags = ETagCache(store)
"""

from pullmirror.state.etags import ETagCache, ETagEntry
from pullmirror.state.migrations import CURRENT_SCHEMA_VERSION, migrate_database
from pullmirror.state.models import (
    CheckRow,
    CommentReactionRow,
    CommentRow,
    CommitRow,
    ModifiedFileRow,
    PullRequestRow,
    ReviewRow,
    SyncedRow,
)
from pullmirror.state.store import SyncStore

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "CheckRow",
    "CommentReactionRow",
    "CommentRow",
    "CommitRow",
    "ETagCache",
    "ETagEntry",
    "ModifiedFileRow",
    "PullRequestRow",
    "ReviewRow",
    "SyncStore",
    "SyncedRow",
    "migrate_database",
]
