"""Notifications telling the presentation layer that stored data changed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from pullmirror.logging import get_logger


class SyncEventKind(str, Enum):
    """What a sync notification refers to."""

    PULL_REQUEST_DETAILS = "pull-request-details"
    PULL_REQUESTS = "pull-requests"


@dataclass(frozen=True)
class SyncEvent:
    """A resource changed (or may have changed) in the store.

    Attributes:
        kind: What was synced
        pull_request_id: Pull request the event concerns, None for list syncs
    """

    kind: SyncEventKind
    pull_request_id: str | None = None


class NotificationSink(Protocol):
    """Receives sync events. Implementations must not raise."""

    def notify(self, event: SyncEvent) -> None: ...


class LoggingSink:
    """Emits each event as a structured log line."""

    def __init__(self) -> None:
        self._log = get_logger("pullmirror.notify")

    def notify(self, event: SyncEvent) -> None:
        self._log.info(
            "sync_event",
            kind=event.kind.value,
            pull_request_id=event.pull_request_id,
        )


class RecordingSink:
    """Keeps every event in memory, in arrival order."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def notify(self, event: SyncEvent) -> None:
        self.events.append(event)

    def for_pull_request(self, pull_request_id: str) -> list[SyncEvent]:
        return [e for e in self.events if e.pull_request_id == pull_request_id]
