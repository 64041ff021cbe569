"""
Unit tests for timeout enforcement and outcome reporting.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from retz_engine.jobs.errors import KillFailedError, TimeoutExceeded, TransportError
from retz_engine.jobs.finalizer import Failure, Success, finalize
from retz_engine.jobs.models import JobState, RemoteJob, TaskContext
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.timeout_guard import check_timeout, deadline_for

SCHEDULED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def queued_job(scheduled="2024-01-01T00:00:00Z"):
    return RemoteJob(id=42, state=JobState.QUEUED, scheduled=scheduled)


class TestDeadline:
    """Test deadline computation."""

    def test_deadline_is_scheduled_plus_timeout(self):
        """Test the deadline is scheduled time plus timeout."""
        assert deadline_for(queued_job(), 90) == SCHEDULED + timedelta(minutes=90)

    def test_offset_timestamp(self):
        """Test a timestamp with a +HH:MM offset."""
        job = queued_job("2024-01-01T09:00:00+09:00")
        assert deadline_for(job, 1) == SCHEDULED + timedelta(minutes=1)

    @pytest.mark.parametrize("scheduled", [
        "2024-01-01T09:00:00+09",
        "2024-01-01T09:00:00+0900",
        "2024-01-01T09:00:00.000+0900",
        "2023-12-31T20:30:00-0330",
    ])
    def test_short_offset_forms(self, scheduled):
        """Test offsets without a colon or without minutes."""
        assert deadline_for(queued_job(scheduled), 1) == SCHEDULED + timedelta(minutes=1)

    @pytest.mark.parametrize("minutes", [0, -5])
    def test_disabled(self, minutes):
        """Test a timeout of zero or less disables the deadline."""
        assert deadline_for(queued_job(), minutes) is None

    def test_missing_scheduled(self):
        """Test a job without a scheduled time."""
        with pytest.raises(TransportError):
            deadline_for(queued_job(scheduled=None), 10)

    def test_unparseable_scheduled(self):
        """Test an unparseable scheduled time."""
        with pytest.raises(TransportError):
            deadline_for(queued_job(scheduled="yesterday"), 10)

    def test_naive_timestamp_rejected(self):
        """Test a timestamp without an offset."""
        with pytest.raises(TransportError):
            deadline_for(queued_job(scheduled="2024-01-01T00:00:00"), 10)


class TestCheckTimeout:
    """Test kill-on-timeout."""

    def test_before_deadline_does_nothing(self):
        """Test nothing happens before the deadline."""
        client = MagicMock()
        check_timeout(client, queued_job(), 10, now=lambda: SCHEDULED + timedelta(minutes=10))
        client.kill.assert_not_called()

    def test_after_deadline_kills_and_raises(self):
        """Test the job is killed past the deadline."""
        client = MagicMock()
        with pytest.raises(TimeoutExceeded) as exc_info:
            check_timeout(client, queued_job(), 10,
                          now=lambda: SCHEDULED + timedelta(minutes=10, seconds=1))
        client.kill.assert_called_once_with(42)
        assert exc_info.value.timeout_minutes == 10
        assert str(exc_info.value) == "Job(id=42) has been killed due to timeout after 10 minute(s)"

    def test_kill_failure(self):
        """Test a failed kill."""
        client = MagicMock()
        client.kill.side_effect = TransportError("503")
        with pytest.raises(KillFailedError) as exc_info:
            check_timeout(client, queued_job(), 10, now=lambda: SCHEDULED + timedelta(hours=1))
        assert isinstance(exc_info.value.__cause__, TimeoutExceeded)
        assert exc_info.value.job_id == 42

    def test_disabled_never_kills(self):
        """Test a disabled timeout never kills."""
        client = MagicMock()
        check_timeout(client, queued_job(), 0, now=lambda: SCHEDULED + timedelta(days=365))
        client.kill.assert_not_called()


class TestFinalize:
    """Test mapping recorded results to outcomes."""

    def test_success(self):
        """Test a zero result gives Success."""
        outcome = finalize(DriverState(job_id=42, job_state="FINISHED", result=0))
        assert isinstance(outcome, Success)
        assert outcome.success
        assert outcome.message == "Job(id=42) succeeded."
        assert outcome.store_params() == {"retz": {"last_job_id": 42}}

    def test_failure_message(self):
        """Test the Failure message."""
        state = DriverState(job_id=42, job_state="KILLED", result=-1, reason="oom")
        outcome = finalize(state)
        assert isinstance(outcome, Failure)
        assert not outcome.success
        assert outcome.message == "Job(id=42) failed. | state=KILLED, reason=oom"

    def test_failure_with_context(self):
        """Test the Failure message names the calling task."""
        state = DriverState(job_id=42, job_state="FINISHED", result=3, reason="exit 3")
        outcome = finalize(state, TaskContext(attempt_id=9, task_name="etl"))
        assert outcome.message.endswith("| attempt=9, task=etl")

    def test_no_result_yet(self):
        """Test finalizing before a result is recorded."""
        with pytest.raises(ValueError):
            finalize(DriverState(job_id=42, job_state="STARTED"))
