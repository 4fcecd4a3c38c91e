"""One-shot sync of every resource kind of a single pull request."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pullmirror.logging import log_detail_sync
from pullmirror.state.models import format_timestamp, utc_now
from pullmirror.sync.kinds import SyncKind
from pullmirror.sync.notify import SyncEvent, SyncEventKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pullmirror.state.store import SyncStore
    from pullmirror.sync.notify import NotificationSink
    from pullmirror.sync.resources import PullRequestSyncer

logger = logging.getLogger(__name__)

DEFAULT_SPACING_SECONDS = 0.25

# Tasks started by spawn_detail_sync; held until done so they are not collected.
_background_tasks: set[asyncio.Task[DetailSyncResult]] = set()


@dataclass
class DetailSyncResult:
    """Outcome of a full detail sync.

    Attributes:
        success: True when every kind synced
        errors: One "<Kind> sync failed: <message>" entry per failed kind
    """

    success: bool
    errors: list[str] = field(default_factory=list)


async def sync_pull_request_details(
    syncer: PullRequestSyncer,
    store: SyncStore,
    sink: NotificationSink,
    pull_request_id: str,
    *,
    spacing_seconds: float = DEFAULT_SPACING_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> DetailSyncResult:
    """Sync checks, commits, files, reviews and comments of one pull request.

    Kinds run one after another with a short pause between them. A failing
    kind does not stop the others; its error is collected instead.
    Permission errors are reported like any other failure here.

    Args:
        syncer: Per-kind fetchers.
        store: Store holding the pull request.
        sink: Notified once after all kinds ran.
        pull_request_id: Pull request to sync.
        spacing_seconds: Pause between kinds.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        DetailSyncResult. details_synced_at is only recorded on full success.
    """
    pull_request = store.get_pull_request(pull_request_id)
    if pull_request is None:
        return DetailSyncResult(success=False, errors=["Pull request not found"])

    started = time.monotonic()
    logger.info(
        "Starting detail sync for %s/%s#%d",
        pull_request.repository_owner,
        pull_request.repository_name,
        pull_request.number,
    )

    errors: list[str] = []
    for index, kind in enumerate(SyncKind):
        if index and spacing_seconds > 0:
            await sleep(spacing_seconds)
        try:
            await syncer.sync_kind(kind, pull_request)
        except Exception as e:  # noqa: BLE001
            logger.warning("%s sync failed for %s: %s", kind.label, pull_request_id, e)
            errors.append(f"{kind.label} sync failed: {e}")

    if not errors:
        store.mark_details_synced(pull_request_id, format_timestamp(utc_now()) or "")

    sink.notify(SyncEvent(SyncEventKind.PULL_REQUEST_DETAILS, pull_request_id))

    result = DetailSyncResult(success=not errors, errors=errors)
    log_detail_sync(
        pull_request_id,
        result.success,
        errors,
        (time.monotonic() - started) * 1000,
    )
    return result


def spawn_detail_sync(
    syncer: PullRequestSyncer,
    store: SyncStore,
    sink: NotificationSink,
    pull_request_id: str,
    *,
    spacing_seconds: float = DEFAULT_SPACING_SECONDS,
) -> asyncio.Task[DetailSyncResult]:
    """Start a detail sync in the background and return its task.

    Must be called from a running event loop.
    """
    task = asyncio.get_running_loop().create_task(
        sync_pull_request_details(
            syncer,
            store,
            sink,
            pull_request_id,
            spacing_seconds=spacing_seconds,
        ),
        name=f"detail-sync-{pull_request_id}",
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
