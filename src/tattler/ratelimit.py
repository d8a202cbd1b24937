"""Poll interval pacing from GitHub's rate-limit headers."""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from dataclasses import dataclass

from .log import get_logger

_log = get_logger("ratelimit")

DEFAULT_INTERVAL = 60


def _int_header(headers: Mapping[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        _log.warning("ignoring non-integer %s header: %r", name, value)
        return None


@dataclass(frozen=True)
class RateState:
    """Rate metadata from one response. Any field may be missing."""

    poll_interval: int | None = None
    rate_limit_remaining: int | None = None
    rate_limit_reset: int | None = None  # epoch seconds

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> RateState:
        return cls(
            poll_interval=_int_header(headers, "X-Poll-Interval"),
            rate_limit_remaining=_int_header(headers, "X-RateLimit-Remaining"),
            rate_limit_reset=_int_header(headers, "X-RateLimit-Reset"),
        )


def compute_next_interval(
    suggested: int,
    remaining: int,
    reset_epoch: int,
    now: float,
) -> int:
    """Seconds until the next poll.

    The larger of the server's flat suggestion and the pacing that spreads the
    remaining quota evenly over the time left until the quota resets. With no
    quota left the whole window until reset is used.
    """
    pacing = math.ceil((reset_epoch - math.floor(now)) / max(remaining, 1))
    return max(suggested, pacing)


class RateLimiter:
    """Tracks the current poll interval for one client."""

    def __init__(self, min_interval: int = DEFAULT_INTERVAL) -> None:
        self.min_interval = min_interval
        self.interval = min_interval
        # last X-Poll-Interval seen; pacing never feeds back into it
        self.suggested = min_interval

    def update(self, state: RateState | None, now: float | None = None) -> int:
        """Recompute the interval from response metadata and return it.

        A missing X-Poll-Interval falls back to the last one the server sent.
        """
        if state is None:
            return self.interval
        if now is None:
            now = time.time()

        if state.poll_interval is not None:
            self.suggested = state.poll_interval
        suggested = self.suggested
        if state.rate_limit_remaining is not None and state.rate_limit_reset is not None:
            interval = compute_next_interval(
                suggested, state.rate_limit_remaining, state.rate_limit_reset, now
            )
        else:
            interval = suggested

        self.interval = max(interval, self.min_interval)
        if self.interval != suggested:
            _log.debug("interval %ds (server suggested %ds)", self.interval, suggested)
        return self.interval
