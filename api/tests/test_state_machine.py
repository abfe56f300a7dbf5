from datetime import datetime, timedelta, timezone

import pytest

from campus_match.services.state_machine import (
    SCHEDULE_COMPLETED,
    SCHEDULE_FAILED,
    SCHEDULE_PENDING,
    is_due,
    transition_schedule_status,
)


def test_pending_moves_to_terminal_status():
    assert transition_schedule_status(SCHEDULE_PENDING, "succeeded") == SCHEDULE_COMPLETED
    assert transition_schedule_status(SCHEDULE_PENDING, "failed") == SCHEDULE_FAILED


def test_terminal_statuses_never_change():
    assert transition_schedule_status(SCHEDULE_COMPLETED, "failed") == SCHEDULE_COMPLETED
    assert transition_schedule_status(SCHEDULE_FAILED, "succeeded") == SCHEDULE_FAILED


def test_unknown_outcome_keeps_pending():
    assert transition_schedule_status(SCHEDULE_PENDING, "noop") == SCHEDULE_PENDING


def test_unknown_status_raises():
    with pytest.raises(ValueError):
        transition_schedule_status("executing", "succeeded")


def test_is_due_only_for_elapsed_pending_entries():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert is_due(SCHEDULE_PENDING, now, now)
    assert is_due(SCHEDULE_PENDING, now - timedelta(days=2), now)
    assert not is_due(SCHEDULE_PENDING, now + timedelta(seconds=1), now)
    assert not is_due(SCHEDULE_COMPLETED, now - timedelta(hours=1), now)
