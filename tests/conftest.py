"""
Shared fixtures: an in-memory remote scheduler and a fixed clock.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from retz_engine.jobs.client import RemoteJobClient
from retz_engine.jobs.errors import NotFoundError
from retz_engine.jobs.log_relay import BufferSink
from retz_engine.jobs.models import FileChunk, JobSpec, JobState, RemoteJob, TaskContext

SCHEDULED_AT = "2024-01-01T00:00:00Z"
NOW = datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)


class FakeScheduler:
    """Remote service state shared by every client session."""

    def __init__(self):
        self.jobs: Dict[int, RemoteJob] = {}
        self.streams: Dict[Tuple[int, str], bytearray] = {}
        self.submitted: List[JobSpec] = []
        self.killed: List[int] = []
        self.calls: List[Tuple] = []
        self.sessions_opened = 0
        self.sessions_closed = 0
        self.next_id = 42
        # Set to an exception instance to make the matching call fail
        self.submit_error: Optional[Exception] = None
        self.kill_error: Optional[Exception] = None

    def client(self) -> "FakeRemoteJobClient":
        """Client factory."""
        self.sessions_opened += 1
        return FakeRemoteJobClient(self)

    def set_state(self, job_id: int, state: JobState, result: int = 0, reason: Optional[str] = None):
        job = self.jobs[job_id]
        job.state = state
        job.result = result
        job.reason = reason
        if state in (JobState.STARTING, JobState.STARTED) and job.started is None:
            job.started = "2024-01-01T00:01:00Z"
        if state.is_terminal:
            job.started = job.started or "2024-01-01T00:01:00Z"
            job.finished = "2024-01-01T00:03:30Z"

    def append(self, job_id: int, stream: str, data: bytes):
        self.streams.setdefault((job_id, stream), bytearray()).extend(data)


class FakeRemoteJobClient(RemoteJobClient):
    """One session against a FakeScheduler."""

    def __init__(self, scheduler: FakeScheduler):
        self.scheduler = scheduler

    def close(self):
        self.scheduler.sessions_closed += 1

    def submit(self, spec: JobSpec) -> RemoteJob:
        self.scheduler.calls.append(("submit", spec.name))
        if self.scheduler.submit_error is not None:
            raise self.scheduler.submit_error
        job = RemoteJob(
            id=self.scheduler.next_id,
            state=JobState.QUEUED,
            scheduled=SCHEDULED_AT,
            name=spec.name,
        )
        self.scheduler.next_id += 1
        self.scheduler.jobs[job.id] = job
        self.scheduler.submitted.append(spec)
        return RemoteJob.from_dict(job.to_dict())

    def get(self, job_id: int) -> RemoteJob:
        self.scheduler.calls.append(("get", job_id))
        if job_id not in self.scheduler.jobs:
            raise NotFoundError(job_id)
        return RemoteJob.from_dict(self.scheduler.jobs[job_id].to_dict())

    def get_file_chunk(self, job_id: int, stream: str, offset: int, max_length: int) -> FileChunk:
        self.scheduler.calls.append(("get_file_chunk", job_id, stream, offset))
        data = self.scheduler.streams.get((job_id, stream))
        if data is None:
            return FileChunk(present=False)
        return FileChunk(present=True, data=bytes(data[offset:offset + max_length]))

    def kill(self, job_id: int) -> None:
        self.scheduler.calls.append(("kill", job_id))
        if self.scheduler.kill_error is not None:
            raise self.scheduler.kill_error
        self.scheduler.killed.append(job_id)
        self.scheduler.set_state(job_id, JobState.KILLED, result=-1, reason="Killed by user")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sink():
    return BufferSink()


@pytest.fixture
def fixed_now():
    """Clock five minutes after SCHEDULED_AT."""
    return lambda: NOW


@pytest.fixture
def context():
    return TaskContext(attempt_id=12345, task_name="build")


@pytest.fixture
def spec():
    return JobSpec(appname="batch", command="./run.sh", name="12345:build", timeout_minutes=60)
