"""Adaptive background polling of the checks of active pull requests.

The syncer keeps a set of active pull requests (ones a user is looking
at) and re-syncs their checks on a single timer. A pull request with
running checks is polled every couple of seconds, an idle one far less
often, and the timer always fires for whichever is due first.

Scheduling runs on the asyncio event loop: ``loop.call_later`` arms the
timer and each tick runs as a task. At most one tick is in flight; a
request for an immediate sync during a tick reruns as soon as it ends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pullmirror.config.schema import SyncConfig
from pullmirror.github.client import GitHubAPIError, is_permission_error
from pullmirror.logging import log_sync_record
from pullmirror.sync.kinds import SyncKind
from pullmirror.sync.notify import SyncEvent, SyncEventKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from pullmirror.github.auth import CredentialProvider
    from pullmirror.github.ratelimit import RateLimitTracker
    from pullmirror.state.store import SyncStore
    from pullmirror.sync.notify import NotificationSink
    from pullmirror.sync.resources import PullRequestSyncer

logger = logging.getLogger(__name__)


@dataclass
class ActivePullRequest:
    """Scheduling state of one active pull request.

    Attributes:
        id: Pull request id
        last_synced_at: Unix seconds of the last successful sync (0 = never)
        has_running_checks: Whether the last sync saw queued or running checks
    """

    id: str
    last_synced_at: float = 0.0
    has_running_checks: bool = False


@dataclass(frozen=True)
class SyncRecord:
    """One background sync attempt, kept for monitoring."""

    id: str
    timestamp: float
    duration_ms: float
    resource_type: str
    resource_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class RateLimitRecord:
    """Quota snapshot taken after a background sync."""

    timestamp: float
    remaining: int
    limit: int
    budget: str


@dataclass(frozen=True)
class MonitoringData:
    syncs: list[SyncRecord]
    rate_limits: list[RateLimitRecord]
    active_pull_request_ids: list[str]


class BackgroundSyncer:
    """Single scheduling loop over active pull requests."""

    def __init__(
        self,
        store: SyncStore,
        syncer: PullRequestSyncer,
        credentials: CredentialProvider,
        sink: NotificationSink,
        tracker: RateLimitTracker,
        *,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize a stopped syncer.

        Args:
            store: Store holding pull requests and checks.
            syncer: Fetchers used for the checks sync.
            credentials: Checked before every tick; no token means no sync.
            sink: Notified after each successful pull request sync.
            tracker: Read for the rate-limit snapshots.
            config: Intervals and history size.
            clock: Returns the current time in unix seconds.
        """
        self._store = store
        self._syncer = syncer
        self._credentials = credentials
        self._sink = sink
        self._tracker = tracker
        self._config = config or SyncConfig()
        self._clock = clock

        self._active: dict[str, ActivePullRequest] = {}
        self._syncs: deque[SyncRecord] = deque(maxlen=self._config.history_size)
        self._rate_limits: deque[RateLimitRecord] = deque(maxlen=self._config.history_size)
        self._sync_counter = 0

        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._rerun_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_in_flight(self) -> bool:
        return self._tick_task is not None

    def active(self, pull_request_id: str) -> ActivePullRequest | None:
        """Scheduling state of an active pull request, if any."""
        return self._active.get(pull_request_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop with an immediate tick. Calling it again does nothing.

        Must be called from a running event loop.
        """
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Background syncer started")
        self._schedule(0)

    def stop(self) -> None:
        """Stop scheduling ticks. A tick already running finishes on its own."""
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info("Background syncer stopped")

    async def wait_idle(self) -> None:
        """Wait for the tick in flight, if any, to finish."""
        task = self._tick_task
        if task is not None:
            await asyncio.shield(task)

    def mark_active(self, pull_request_id: str) -> None:
        """Add a pull request to the polling set.

        A newly added pull request is synced right away when the loop runs.
        """
        if pull_request_id in self._active:
            return
        self._active[pull_request_id] = ActivePullRequest(id=pull_request_id)
        logger.info("Pull request %s marked active", pull_request_id)

        if not self._running:
            return
        if self._tick_task is not None:
            self._rerun_requested = True
        else:
            self._schedule(0)

    def _schedule(self, delay: float) -> None:
        if not self._running or self._loop is None:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(delay, self._start_tick)

    def _start_tick(self) -> None:
        self._timer = None
        if not self._running or self._loop is None:
            return
        if self._tick_task is not None:
            self._rerun_requested = True
            return
        self._tick_task = self._loop.create_task(self._tick(), name="pullmirror-background-tick")

    async def _tick(self) -> None:
        try:
            delay = await self.run_once()
        except Exception:
            logger.exception("Background sync tick failed")
            delay = self._config.idle_interval_seconds
        finally:
            self._tick_task = None

        if self._rerun_requested:
            self._rerun_requested = False
            delay = 0
        self._schedule(delay)

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def run_once(self) -> float:
        """Run one tick over the active pull requests.

        Returns:
            Seconds until the next tick should run.
        """
        if not self._credentials.get_token():
            logger.debug("No GitHub token, retrying in %ss", self._config.no_token_retry_seconds)
            return self._config.no_token_retry_seconds

        running_interval = self._config.running_checks_interval_seconds
        idle_interval = self._config.idle_interval_seconds
        next_delay = idle_interval

        for pull_request_id, active in list(self._active.items()):
            interval = running_interval if active.has_running_checks else idle_interval
            elapsed = self._clock() - active.last_synced_at
            if elapsed < interval:
                next_delay = min(next_delay, interval - elapsed)
                continue

            pull_request = self._store.get_pull_request(pull_request_id)
            if pull_request is None:
                logger.info("Pull request %s no longer stored, deactivating", pull_request_id)
                self._active.pop(pull_request_id, None)
                continue

            self._sync_counter += 1
            record_id = f"sync-{self._sync_counter}"
            started = self._clock()
            error: str | None = None

            try:
                try:
                    await self._syncer.sync_checks(pull_request)
                except GitHubAPIError as e:
                    if not is_permission_error(e):
                        raise
                    logger.info("No permission to read checks of %s: %s", pull_request_id, e)

                has_running = self._store.has_running_checks(pull_request_id)
                active.last_synced_at = self._clock()
                active.has_running_checks = has_running
                self._sink.notify(SyncEvent(SyncEventKind.PULL_REQUEST_DETAILS, pull_request_id))
                if has_running:
                    next_delay = min(next_delay, running_interval)
            except Exception as e:  # noqa: BLE001
                error = str(e) or type(e).__name__
                logger.warning("Error syncing checks of %s: %s", pull_request_id, e)

            self._record_sync(
                SyncRecord(
                    id=record_id,
                    timestamp=started,
                    duration_ms=(self._clock() - started) * 1000,
                    resource_type=SyncKind.CHECKS.value,
                    resource_id=pull_request_id,
                    success=error is None,
                    error=error,
                )
            )
            self._record_rate_limits()

        return max(0.0, next_delay)

    def _record_sync(self, record: SyncRecord) -> None:
        self._syncs.append(record)
        log_sync_record(
            record.id,
            record.resource_type,
            record.resource_id,
            record.success,
            record.duration_ms,
            record.error,
        )

    def _record_rate_limits(self) -> None:
        now = self._clock()
        for budget in self._tracker.budgets():
            state = self._tracker.state(budget)
            if state is None:
                continue
            self._rate_limits.append(
                RateLimitRecord(
                    timestamp=now,
                    remaining=state.remaining,
                    limit=state.limit,
                    budget=budget.value,
                )
            )

    def get_monitoring_data(self) -> MonitoringData:
        """Snapshot of sync history, quota history and active pull requests."""
        return MonitoringData(
            syncs=list(self._syncs),
            rate_limits=list(self._rate_limits),
            active_pull_request_ids=list(self._active),
        )
