"""Per-budget GitHub API quota tracking.

GitHub meters GraphQL search and REST resource calls against separate
quotas. The tracker keeps the last reading for each budget and answers
whether a caller should pause before the next request, and for how long.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pullmirror.logging import log_rate_limit

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

# Pause once remaining drops below this fraction of the limit...
PAUSE_FRACTION = 0.10
# ...or below this absolute floor, whichever is larger.
PAUSE_FLOOR = 5
# Added to every computed wait so the request lands after the reset.
RESET_BUFFER_SECONDS = 5


class BudgetType(str, Enum):
    """Quota budgets tracked independently."""

    BULK = "bulk"  # GraphQL search
    RESOURCE = "resource"  # REST per-resource calls


@dataclass(frozen=True)
class RateLimitState:
    """Last known quota reading for one budget.

    Attributes:
        remaining: Calls left in the current window (never above limit)
        limit: Calls allowed per window
        reset_at: Unix seconds when the window resets
        last_updated: Unix seconds when this reading was taken
    """

    remaining: int
    limit: int
    reset_at: float
    last_updated: float

    @property
    def reset_at_iso(self) -> str:
        """Reset time as an ISO-8601 UTC string."""
        return datetime.fromtimestamp(self.reset_at, tz=UTC).isoformat()


def pause_threshold(limit: int) -> float:
    """Remaining count below which requests should pause."""
    return max(limit * PAUSE_FRACTION, PAUSE_FLOOR)


class RateLimitTracker:
    """Thread-safe holder of per-budget quota state.

    Only the request client writes to the tracker. State lives in memory
    and starts empty, so nothing pauses until a response has been seen.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty tracker.

        Args:
            clock: Returns the current time in unix seconds.
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[BudgetType, RateLimitState] = {}

    def update_from_response(
        self,
        budget: BudgetType,
        remaining: int,
        limit: int,
        reset_at: float,
    ) -> RateLimitState:
        """Record a quota reading.

        Args:
            budget: Budget the reading belongs to.
            remaining: Calls left in the window. Clamped to limit.
            limit: Calls allowed per window.
            reset_at: Unix seconds when the window resets.

        Returns:
            The stored state.
        """
        budget = BudgetType(budget)
        state = RateLimitState(
            remaining=max(0, min(remaining, limit)),
            limit=limit,
            reset_at=float(reset_at),
            last_updated=self._clock(),
        )
        with self._lock:
            self._states[budget] = state

        log_rate_limit(
            budget.value,
            state.remaining,
            state.limit,
            state.reset_at_iso,
            pausing=self._is_low(state),
        )
        return state

    def update_from_headers(
        self,
        budget: BudgetType,
        headers: Mapping[str, str],
    ) -> RateLimitState | None:
        """Record a reading from x-ratelimit-* response headers.

        Nothing is recorded unless remaining, limit and reset are all present
        and numeric.

        Args:
            budget: Budget the response was charged to.
            headers: Response headers (case-insensitive mapping).

        Returns:
            The stored state, or None if the headers carried no reading.
        """
        raw = (
            headers.get("x-ratelimit-remaining"),
            headers.get("x-ratelimit-limit"),
            headers.get("x-ratelimit-reset"),
        )
        if any(value is None for value in raw):
            return None
        try:
            remaining, limit, reset_at = (int(value) for value in raw)  # type: ignore[arg-type]
        except ValueError:
            return None
        return self.update_from_response(budget, remaining, limit, reset_at)

    def update_from_graphql(
        self,
        rate_limit: Mapping[str, Any] | None,
    ) -> RateLimitState | None:
        """Record a reading from a GraphQL ``rateLimit`` object.

        Args:
            rate_limit: Mapping with limit, remaining and resetAt (ISO-8601).

        Returns:
            The stored state, or None if the object was missing or incomplete.
        """
        if not rate_limit:
            return None
        try:
            limit = int(rate_limit["limit"])
            remaining = int(rate_limit["remaining"])
            reset_at = datetime.fromisoformat(
                str(rate_limit["resetAt"]).replace("Z", "+00:00")
            ).timestamp()
        except (KeyError, TypeError, ValueError):
            return None
        return self.update_from_response(BudgetType.BULK, remaining, limit, reset_at)

    def state(self, budget: BudgetType) -> RateLimitState | None:
        """Get the last reading for a budget, if any."""
        with self._lock:
            return self._states.get(BudgetType(budget))

    def remaining_quota(self, budget: BudgetType) -> int | None:
        """Get calls remaining for a budget, or None if unknown."""
        state = self.state(budget)
        return state.remaining if state else None

    def should_pause(self, budget: BudgetType) -> bool:
        """Whether the next request on this budget should wait for the reset."""
        state = self.state(budget)
        if state is None:
            return False
        return self._is_low(state)

    def wait_duration_ms(self, budget: BudgetType) -> int:
        """Milliseconds to wait for the window to reset, plus a small buffer.

        Returns 0 when the budget has no reading yet.
        """
        state = self.state(budget)
        if state is None:
            return 0
        seconds_left = max(0.0, state.reset_at - self._clock())
        return int((seconds_left + RESET_BUFFER_SECONDS) * 1000)

    def budgets(self) -> list[BudgetType]:
        """Budgets that have a reading, in declaration order."""
        with self._lock:
            return [budget for budget in BudgetType if budget in self._states]

    def _is_low(self, state: RateLimitState) -> bool:
        return (
            state.remaining < pause_threshold(state.limit)
            and state.reset_at > self._clock()
        )
