"""Synchronization engine: reconciliation, fetchers and schedulers."""

from pullmirror.sync.background import BackgroundSyncer, MonitoringData
from pullmirror.sync.details import (
    DetailSyncResult,
    spawn_detail_sync,
    sync_pull_request_details,
)
from pullmirror.sync.kinds import SyncKind
from pullmirror.sync.notify import (
    LoggingSink,
    NotificationSink,
    RecordingSink,
    SyncEvent,
    SyncEventKind,
)
from pullmirror.sync.pull_requests import PullRequestSyncResult, sync_pull_requests
from pullmirror.sync.reconciler import Reconciler, ReconcileResult
from pullmirror.sync.resources import PullRequestSyncer

__all__ = [
    "BackgroundSyncer",
    "DetailSyncResult",
    "LoggingSink",
    "MonitoringData",
    "NotificationSink",
    "PullRequestSyncResult",
    "PullRequestSyncer",
    "ReconcileResult",
    "Reconciler",
    "RecordingSink",
    "SyncEvent",
    "SyncEventKind",
    "SyncKind",
    "spawn_detail_sync",
    "sync_pull_request_details",
    "sync_pull_requests",
]
