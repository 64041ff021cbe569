"""
Remote job driving.

This module provides:
- Job models and the persisted DriverState
- PollDriver, the resumable tick state machine (submit, poll, relay, finalize)
- Execution modes (api polling, blocking command-line client)
- File and Redis state stores
- TaskRunner, the caller loop that sleeps between ticks

Architecture:
    TaskRunner (caller loop, owns sleeping and persistence)
    └── ExecutionMode.tick(state) -> Suspend | Done
        └── PollDriver
            ├── RemoteJobClient (one session per tick)
            ├── TimeoutGuard, LogRelay, backoff
            └── finalize -> Success | Failure

Usage:
    from retz_engine.jobs import PollDriver, BufferSink

    driver = PollDriver(make_client, sink=BufferSink())
    result = driver.tick(spec, None)
"""

from retz_engine.jobs.client import ClientFactory, RemoteJobClient
from retz_engine.jobs.driver import Done, PollDriver, Suspend, TickResult
from retz_engine.jobs.errors import (
    ConfigError,
    DriverError,
    IllegalRemoteState,
    KillFailedError,
    NotFoundError,
    RelayIOError,
    StateError,
    SubmitError,
    TimeoutExceeded,
    TransportError,
)
from retz_engine.jobs.finalizer import Failure, Outcome, Success, finalize
from retz_engine.jobs.log_relay import BufferSink, Sink, TeeSink
from retz_engine.jobs.models import FileChunk, JobSpec, JobState, RemoteJob, TaskContext
from retz_engine.jobs.modes import ApiMode, CliMode, ExecutionMode, get_execution_mode
from retz_engine.jobs.runner import TaskRunner
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.state_store import FileStateStore, StateStore
from retz_engine.jobs.task_config import SystemSettings, TaskConfig

__all__ = [
    # Models
    "JobState",
    "RemoteJob",
    "FileChunk",
    "JobSpec",
    "TaskContext",
    "DriverState",
    # Driver
    "PollDriver",
    "Suspend",
    "Done",
    "TickResult",
    "Success",
    "Failure",
    "Outcome",
    "finalize",
    # Client
    "RemoteJobClient",
    "ClientFactory",
    "Sink",
    "TeeSink",
    "BufferSink",
    # Config and modes
    "TaskConfig",
    "SystemSettings",
    "ExecutionMode",
    "ApiMode",
    "CliMode",
    "get_execution_mode",
    # Persistence
    "StateStore",
    "FileStateStore",
    "TaskRunner",
    # Errors
    "DriverError",
    "ConfigError",
    "StateError",
    "TransportError",
    "SubmitError",
    "RelayIOError",
    "KillFailedError",
    "NotFoundError",
    "TimeoutExceeded",
    "IllegalRemoteState",
]
