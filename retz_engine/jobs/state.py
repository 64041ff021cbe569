"""
Persisted driver state carried between ticks.

The driver never keeps anything in process memory across a suspend: the
caller receives a DriverState with every Suspend result and hands it back,
unchanged, on the next tick. Serialization is a flat mapping so callers can
store it in JSON files, Redis hashes or a workflow engine's state params.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional

from retz_engine.jobs.errors import StateError
from retz_engine.jobs.models import RemoteJob

# Serialized keys
KEY_VERSION = "version"
KEY_JOB_ID = "job_id"
KEY_JOB_STATE = "job_state"
KEY_POLL_ITERATION = "poll_iteration"
KEY_OFFSET = "offset"
KEY_RESULT = "result"
KEY_REASON = "reason"


@dataclass
class DriverState:
    """
    State of one driven job.

    Attributes:
        job_id: Remote job id, None until submitted. Never changes once set.
        job_state: Last observed remote state (string form)
        poll_iteration: Idle tick counter used for backoff
        offset: Bytes of stdout already relayed. Never decreases.
        result: Terminal result code, set once the job is fully drained
        reason: Failure reason, only when result != 0
    """
    VERSION = 1

    job_id: Optional[int] = None
    job_state: Optional[str] = None
    poll_iteration: int = 0
    offset: int = 0
    result: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_submitted(self) -> bool:
        return self.job_id is not None

    @property
    def is_finished(self) -> bool:
        """Check if a terminal result has been recorded."""
        return self.result is not None

    def record_submission(self, job: RemoteJob) -> None:
        """Initialize state for a freshly submitted job."""
        if self.job_id is not None and self.job_id != job.id:
            raise StateError(
                f"State already tracks Job(id={self.job_id}), refusing Job(id={job.id})",
                job_id=self.job_id,
            )
        self.job_id = job.id
        self.job_state = job.state.value
        self.poll_iteration = 0
        self.offset = 0

    def record_observation(self, job: RemoteJob) -> None:
        """Remember the state seen in this tick."""
        if job.id != self.job_id:
            raise StateError(
                f"Observed Job(id={job.id}) while tracking Job(id={self.job_id})",
                job_id=self.job_id,
            )
        self.job_state = job.state.value

    def advance(self, bytes_read: int) -> None:
        """Move the stdout offset forward. New bytes reset the idle counter."""
        if bytes_read < 0:
            raise ValueError(f"bytes_read must be non-negative, got {bytes_read}")
        self.offset += bytes_read
        if bytes_read:
            self.poll_iteration = 0

    def record_result(self, job: RemoteJob) -> None:
        """Store the terminal outcome and drop polling progress."""
        self.job_state = job.state.value
        self.result = job.result
        self.reason = job.reason if job.result != 0 else None
        self.poll_iteration = 0
        self.offset = 0

    def copy(self) -> "DriverState":
        return DriverState.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat mapping. Unset optional values are omitted."""
        data: Dict[str, Any] = {KEY_VERSION: self.VERSION}
        if self.job_id is not None:
            data[KEY_JOB_ID] = self.job_id
        if self.job_state is not None:
            data[KEY_JOB_STATE] = self.job_state
        if self.result is None:
            data[KEY_POLL_ITERATION] = self.poll_iteration
            data[KEY_OFFSET] = self.offset
        else:
            data[KEY_RESULT] = self.result
            if self.reason is not None:
                data[KEY_REASON] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DriverState":
        """
        Create DriverState from a mapping produced by to_dict.

        Values may be strings (Redis hashes store everything as text).
        None or an empty mapping gives a fresh state.

        Raises:
            StateError: If the mapping is malformed or from a newer version
        """
        if not data:
            return cls()

        # Handle bytes from Redis
        data = {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in data.items()
        }

        try:
            version = int(data.get(KEY_VERSION, cls.VERSION))
        except (TypeError, ValueError) as e:
            raise StateError(f"Invalid state version: {data.get(KEY_VERSION)!r}") from e
        if version > cls.VERSION:
            raise StateError(
                f"State version {version} is newer than supported version {cls.VERSION}"
            )

        def optional_int(key: str) -> Optional[int]:
            value = data.get(key)
            if value is None or value == "":
                return None
            try:
                return int(value)
            except (TypeError, ValueError) as e:
                raise StateError(f"State field '{key}' is not an integer: {value!r}") from e

        return cls(
            job_id=optional_int(KEY_JOB_ID),
            job_state=data.get(KEY_JOB_STATE) or None,
            poll_iteration=optional_int(KEY_POLL_ITERATION) or 0,
            offset=optional_int(KEY_OFFSET) or 0,
            result=optional_int(KEY_RESULT),
            reason=data.get(KEY_REASON) or None,
        )

    def __repr__(self) -> str:
        return (
            f"DriverState(job_id={self.job_id}, job_state={self.job_state}, "
            f"poll_iteration={self.poll_iteration}, offset={self.offset}, result={self.result})"
        )
