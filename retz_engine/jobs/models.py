"""
Job data models for the remote job driver.

This module defines:
- JobState: Enum for remote job lifecycle states
- RemoteJob: Read-only snapshot of a job as reported by the remote service
- FileChunk: One get-file response for a job output stream
- JobSpec: Immutable description of the job to submit
- TaskContext: Identity of the calling task (attempt, name, workspace)
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List, Union

from retz_engine.jobs.errors import IllegalRemoteState

# Time of day followed by a +HH, +HHMM or +HH:MM offset
OFFSET_PATTERN = re.compile(r"([T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2}):?(\d{2})?$")


class JobState(str, Enum):
    """Remote job lifecycle states."""
    QUEUED = "QUEUED"        # Accepted, waiting for resources
    STARTING = "STARTING"    # Resources offered, launching
    STARTED = "STARTED"      # Running
    FINISHED = "FINISHED"    # Exited (result holds the exit code)
    KILLED = "KILLED"        # Killed by the service or a user

    @property
    def is_terminal(self) -> bool:
        """Check if no further state transitions can occur."""
        return self in (JobState.FINISHED, JobState.KILLED)

    @classmethod
    def parse(cls, value: Any, job_id: Optional[int] = None) -> "JobState":
        """Convert a raw state value, raising IllegalRemoteState if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise IllegalRemoteState(value, job_id=job_id) from e


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp with timezone offset.

    Accepts a trailing ``Z`` for UTC and offsets written as ``+09``,
    ``+0900`` or ``+09:00``. Returns None for empty values.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = OFFSET_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}:{m.group(3) or '00'}", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp has no timezone offset: {value}")
    return parsed


@dataclass
class RemoteJob:
    """
    Snapshot of a remote job.

    Attributes:
        id: Job id assigned by the remote service on submission
        state: Current lifecycle state
        scheduled: When the job was accepted (ISO-8601 with offset)
        started: When the job started running
        finished: When the job reached a terminal state
        result: Exit code, None until the service reports one
        reason: Failure reason, present when result != 0
        name: Job name as registered with the service
    """
    id: int
    state: JobState = JobState.QUEUED
    scheduled: Optional[str] = None
    started: Optional[str] = None
    finished: Optional[str] = None
    result: Optional[int] = None
    reason: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        # Convert state string to enum if needed
        if not isinstance(self.state, JobState):
            self.state = JobState.parse(self.state, job_id=self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "state": self.state.value,
            "scheduled": self.scheduled,
            "started": self.started,
            "finished": self.finished,
            "result": self.result,
            "reason": self.reason,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteJob":
        """
        Create RemoteJob from the remote service's JSON shape.

        Raises:
            IllegalRemoteState: If the state is not one of the known values
        """
        job_id = int(data["id"])
        result = data.get("result")
        return cls(
            id=job_id,
            state=JobState.parse(data.get("state", JobState.QUEUED.value), job_id=job_id),
            scheduled=data.get("scheduled") or None,
            started=data.get("started") or None,
            finished=data.get("finished") or None,
            result=int(result) if result is not None else None,
            reason=data.get("reason") or None,
            name=data.get("name") or None,
        )

    @property
    def elapsed_seconds(self) -> Optional[float]:
        """Seconds between started and finished, None if either is missing."""
        try:
            started = parse_timestamp(self.started)
            finished = parse_timestamp(self.finished)
        except (ValueError, TypeError):
            return None
        if started is None or finished is None:
            return None
        return (finished - started).total_seconds()

    def __repr__(self) -> str:
        return f"RemoteJob(id={self.id}, state={self.state.value}, result={self.result})"


@dataclass
class FileChunk:
    """
    One get-file response.

    ``present=False`` means the stream does not exist (yet); empty ``data``
    with ``present=True`` means no new bytes are currently available.
    """
    present: bool
    data: bytes = b""


@dataclass(frozen=True)
class JobSpec:
    """
    Job submission parameters, built once per task.

    Attributes:
        appname: Application registered with the remote service
        command: Remote command line
        env: Environment variables for the remote command
        cpu: CPU count
        mem_mb: Memory in MB (after unit normalization)
        disk_mb: Disk in MB (after unit normalization)
        gpu: GPU count
        ports: Number of ports to allocate
        priority: Scheduling priority
        name: Display name (at most 32 ASCII characters)
        tags: Tags for filtering on the remote side
        timeout_minutes: Wall-clock limit, 0 or less disables it
    """
    appname: str
    command: str
    env: Dict[str, str] = field(default_factory=dict)
    cpu: int = 1
    mem_mb: int = 32
    disk_mb: int = 32
    gpu: int = 0
    ports: int = 0
    priority: int = 0
    name: str = ""
    tags: List[str] = field(default_factory=list)
    timeout_minutes: int = 24 * 60

    def summary(self) -> Dict[str, Any]:
        """Plain mapping describing the job. Environment values are hidden."""
        return {
            "appname": self.appname,
            "name": self.name,
            "command": self.command,
            "env": sorted(self.env),
            "resources": {
                "cpu": self.cpu,
                "mem_mb": self.mem_mb,
                "disk_mb": self.disk_mb,
                "gpu": self.gpu,
                "ports": self.ports,
            },
            "priority": self.priority,
            "tags": list(self.tags),
            "timeout_minutes": self.timeout_minutes,
        }


@dataclass
class TaskContext:
    """
    The calling task.

    Attributes:
        attempt_id: Opaque numeric run identifier, prefix of the default job name
        task_name: Human task name
        workspace: Working directory for relative paths and the CLI mode
        secrets: Privileged environment variables for the CLI mode (never logged)
    """
    attempt_id: Union[int, str]
    task_name: str
    workspace: str = "."
    secrets: Dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"TaskContext(attempt_id={self.attempt_id}, task_name={self.task_name!r})"
