"""Failure tracking for market data refreshes.

The tracker is a small state machine::

    Healthy ──failure──▶ Degraded(n) ──failure──▶ Degraded(n+1)
       ▲                     │
       └──────success────────┤
                             └──429──▶ RateLimited(until, n)

``RateLimited`` expires on its own once ``until`` passes. If no failure
is seen for ``error_reset_minutes``, the counter decays back to zero.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Union

from .config import FailureConfig
from .errors import RateLimitError
from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Healthy:
    pass


@dataclass(frozen=True)
class Degraded:
    consecutive_errors: int


@dataclass(frozen=True)
class RateLimited:
    until: datetime
    consecutive_errors: int = 0


TrackerStatus = Union[Healthy, Degraded, RateLimited]


@dataclass(frozen=True)
class FailureState:
    status: TrackerStatus = field(default_factory=Healthy)
    consecutive_errors: int = 0
    last_error_at: datetime | None = None
    last_success_at: datetime | None = None
    rate_limit_until: datetime | None = None

    @property
    def is_rate_limited(self) -> bool:
        return isinstance(self.status, RateLimited)


class FailureTracker:
    """Shared failure bookkeeping for every refresh in a session.

    Outcomes are recorded under a lock so concurrent refreshes of different
    asset classes apply their results one at a time.
    """

    def __init__(
        self,
        config: FailureConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        config = config or FailureConfig()
        self.max_consecutive_errors = config.max_consecutive_errors
        self.reset_window = timedelta(minutes=config.error_reset_minutes)
        self.cooldown = timedelta(seconds=config.rate_limit_cooldown_seconds)
        self._clock = clock
        self._state = FailureState()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _settle(self, state: FailureState, now: datetime) -> FailureState:
        """Apply time-based transitions: rate-limit expiry and stale-failure decay."""
        if state.rate_limit_until is not None and now >= state.rate_limit_until:
            state = replace(state, rate_limit_until=None)

        if (
            state.consecutive_errors
            and state.last_error_at is not None
            and now - state.last_error_at > self.reset_window
        ):
            logger.debug(
                "No failures for %s, resetting error counter", self.reset_window
            )
            state = replace(state, consecutive_errors=0)

        if state.rate_limit_until is not None:
            status: TrackerStatus = RateLimited(
                state.rate_limit_until, state.consecutive_errors
            )
        elif state.consecutive_errors:
            status = Degraded(state.consecutive_errors)
        else:
            status = Healthy()
        return replace(state, status=status)

    async def record_success(self) -> FailureState:
        async with self._lock:
            self._state = FailureState(
                status=Healthy(),
                consecutive_errors=0,
                last_error_at=self._state.last_error_at,
                last_success_at=self._clock(),
                rate_limit_until=None,
            )
            return self._state

    async def record_failure(self, error: BaseException) -> FailureState:
        async with self._lock:
            now = self._clock()
            state = self._settle(self._state, now)
            errors = state.consecutive_errors + 1

            if isinstance(error, RateLimitError):
                cooldown = self.cooldown
                if error.retry_after and error.retry_after > cooldown.total_seconds():
                    cooldown = timedelta(seconds=error.retry_after)
                until = now + cooldown
                logger.warning(
                    "Rate limited, pausing refreshes for %.0fs", cooldown.total_seconds()
                )
            else:
                until = state.rate_limit_until
                logger.warning(
                    "Refresh failed (%d consecutive): %s", errors, error
                )

            self._state = self._settle(
                replace(
                    state,
                    consecutive_errors=errors,
                    last_error_at=now,
                    rate_limit_until=until,
                ),
                now,
            )
            return self._state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self, now: datetime | None = None) -> FailureState:
        """Current state with time-based transitions applied."""
        return self._settle(self._state, now or self._clock())

    def is_auto_refresh_eligible(self, now: datetime | None = None) -> bool:
        state = self.state(now)
        return (
            not state.is_rate_limited
            and state.consecutive_errors < self.max_consecutive_errors
        )

    def is_manual_refresh_allowed(self, now: datetime | None = None) -> bool:
        return not self.state(now).is_rate_limited

    def rate_limit_remaining(self, now: datetime | None = None) -> float:
        """Seconds until refreshes are allowed again; 0 when not rate limited."""
        now = now or self._clock()
        state = self.state(now)
        if state.rate_limit_until is None:
            return 0.0
        return max(0.0, (state.rate_limit_until - now).total_seconds())
