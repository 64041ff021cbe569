"""
Exceptions raised by the job driver.

Everything derives from DriverError so callers can catch one type. A job
that finishes with a non-zero result is not an exception: it is reported as
a Failure outcome by the finalizer.
"""

from typing import Optional


class DriverError(RuntimeError):
    """Base class for fatal driver errors. Carries the job id when known."""

    def __init__(self, message: str, job_id: Optional[int] = None):
        super().__init__(message)
        self.job_id = job_id


class ConfigError(DriverError):
    """Invalid task or system configuration. Raised before any remote call."""


class StateError(DriverError):
    """Persisted driver state could not be read or written."""


class TransportError(DriverError):
    """I/O failure talking to the remote service. Not retried by the driver."""


class SubmitError(TransportError):
    """Job submission failed or returned an unexpected response."""


class RelayIOError(TransportError):
    """A file-chunk request returned something other than a file chunk."""


class KillFailedError(TransportError):
    """Killing a timed-out job failed. The timeout is kept as ``__cause__``."""


class NotFoundError(DriverError):
    """The remote service has no job with the requested id."""

    def __init__(self, job_id: int):
        super().__init__(f"Job(id={job_id}) not found", job_id=job_id)


class TimeoutExceeded(DriverError):
    """The job ran past its wall-clock deadline and has been killed."""

    def __init__(self, job_id: Optional[int], timeout_minutes: int):
        super().__init__(
            f"Job(id={job_id}) has been killed due to timeout after "
            f"{timeout_minutes} minute(s)",
            job_id=job_id,
        )
        self.timeout_minutes = timeout_minutes


class IllegalRemoteState(DriverError):
    """The remote service reported a job state the driver does not know."""

    def __init__(self, state: object, job_id: Optional[int] = None):
        super().__init__(f"Job(id={job_id}) unexpected state: {state}", job_id=job_id)
        self.state = state
