"""Polling cadence for a pull request's mergeable state.

GitHub computes mergeability asynchronously and reports ``"unknown"`` until
it settles. While unknown, poll fast for a bounded window; otherwise use the
caller's default interval. Both functions are pure; ``now`` is epoch
milliseconds supplied by the caller.
"""

from dataclasses import dataclass

MERGEABLE_POLL_INTERVAL_MS = 5000
MERGEABLE_POLL_WINDOW_MS = 60000
MERGEABLE_POLL_MAX_ATTEMPTS = 12

UNKNOWN = "unknown"


@dataclass(frozen=True)
class MergeablePollingState:
    until: int | None = None
    count: int = 0

    @property
    def is_reset(self) -> bool:
        return self.until is None and self.count == 0


INITIAL_POLLING_STATE = MergeablePollingState()


def next_polling_state(
    mergeable_state: str | None,
    now: int,
    state: MergeablePollingState,
    did_refetch: bool = True,
) -> MergeablePollingState:
    """Advance the fast-polling window after a check.

    A settled state resets the window (returning ``state`` itself when it is
    already reset). An unknown state opens a window on the first refetch and
    counts each later refetch; a check without a refetch changes nothing.
    """
    if mergeable_state != UNKNOWN:
        if state.is_reset:
            return state
        return MergeablePollingState(until=None, count=0)

    if not did_refetch:
        return state

    if state.until is None:
        return MergeablePollingState(until=now + MERGEABLE_POLL_WINDOW_MS, count=1)

    return MergeablePollingState(until=state.until, count=state.count + 1)


def get_polling_interval(
    mergeable_state: str | None,
    now: int,
    state: MergeablePollingState,
    default_interval_ms: int,
) -> int:
    if (
        mergeable_state == UNKNOWN
        and state.until is not None
        and now < state.until
        and state.count < MERGEABLE_POLL_MAX_ATTEMPTS
    ):
        return MERGEABLE_POLL_INTERVAL_MS
    return default_interval_ms
