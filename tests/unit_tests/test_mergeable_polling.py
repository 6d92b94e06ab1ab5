"""Tests for the mergeable-state fast polling window."""

from terragon_sandbox.core.mergeable_polling import (
    INITIAL_POLLING_STATE,
    MERGEABLE_POLL_INTERVAL_MS,
    MERGEABLE_POLL_MAX_ATTEMPTS,
    MERGEABLE_POLL_WINDOW_MS,
    MergeablePollingState,
    get_polling_interval,
    next_polling_state,
)

DEFAULT_INTERVAL = 30000
NOW = 1_700_000_000_000


class TestNextPollingState:
    """Tests for next_polling_state."""

    def test_first_unknown_opens_window(self):
        """Test the first unknown refetch starts a window and counts once."""
        state = next_polling_state("unknown", NOW, INITIAL_POLLING_STATE)

        assert state == MergeablePollingState(until=NOW + MERGEABLE_POLL_WINDOW_MS, count=1)

    def test_later_unknown_counts_without_moving_window(self):
        """Test repeated unknown refetches increment the count only."""
        state = next_polling_state("unknown", NOW, INITIAL_POLLING_STATE)
        state = next_polling_state("unknown", NOW + 5000, state)
        state = next_polling_state("unknown", NOW + 10000, state)

        assert state.until == NOW + MERGEABLE_POLL_WINDOW_MS
        assert state.count == 3

    def test_unknown_without_refetch_is_unchanged(self):
        """Test a check that did not refetch leaves the state alone."""
        state = MergeablePollingState(until=NOW + 1000, count=4)

        assert next_polling_state("unknown", NOW, state, did_refetch=False) is state
        assert next_polling_state("unknown", NOW, INITIAL_POLLING_STATE, did_refetch=False) is INITIAL_POLLING_STATE

    def test_settled_state_resets(self):
        """Test a known mergeable state clears the window."""
        state = MergeablePollingState(until=NOW + 1000, count=4)

        for mergeable_state in ("clean", "dirty", "blocked", None):
            assert next_polling_state(mergeable_state, NOW, state) == INITIAL_POLLING_STATE

    def test_settled_state_keeps_identity_when_already_reset(self):
        """Test resetting an already reset state returns the same object."""
        state = MergeablePollingState()

        assert next_polling_state("clean", NOW, state) is state


class TestGetPollingInterval:
    """Tests for get_polling_interval."""

    def test_fast_inside_window(self):
        """Test the fast interval applies while unknown and inside the window."""
        state = next_polling_state("unknown", NOW, INITIAL_POLLING_STATE)

        assert get_polling_interval("unknown", NOW + 1000, state, DEFAULT_INTERVAL) == MERGEABLE_POLL_INTERVAL_MS

    def test_default_after_window_expires(self):
        """Test the window end is exclusive."""
        state = MergeablePollingState(until=NOW, count=1)

        assert get_polling_interval("unknown", NOW, state, DEFAULT_INTERVAL) == DEFAULT_INTERVAL

    def test_default_after_attempt_budget(self):
        """Test fast polling stops after the maximum number of attempts."""
        state = MergeablePollingState(until=NOW + 1000, count=MERGEABLE_POLL_MAX_ATTEMPTS)

        assert get_polling_interval("unknown", NOW, state, DEFAULT_INTERVAL) == DEFAULT_INTERVAL

    def test_default_without_window(self):
        """Test unknown with no open window uses the default."""
        assert get_polling_interval("unknown", NOW, INITIAL_POLLING_STATE, DEFAULT_INTERVAL) == DEFAULT_INTERVAL

    def test_default_when_settled(self):
        """Test a known state always uses the default."""
        state = MergeablePollingState(until=NOW + 1000, count=1)

        assert get_polling_interval("clean", NOW, state, DEFAULT_INTERVAL) == DEFAULT_INTERVAL

    def test_full_unknown_sequence(self):
        """Test a PR stuck in unknown polls fast exactly until the budget is spent."""
        state = INITIAL_POLLING_STATE
        now = NOW
        fast_polls = 0

        while True:
            state = next_polling_state("unknown", now, state)
            interval = get_polling_interval("unknown", now, state, DEFAULT_INTERVAL)
            if interval != MERGEABLE_POLL_INTERVAL_MS:
                break
            fast_polls += 1
            now += interval

        assert fast_polls == MERGEABLE_POLL_MAX_ATTEMPTS - 1
        assert state.count == MERGEABLE_POLL_MAX_ATTEMPTS
