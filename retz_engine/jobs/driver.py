"""
Resumable poll driver for remote jobs.

Each call to ``PollDriver.tick`` performs at most one round of remote calls
and then either suspends (asking to be called again after a delay with the
returned state) or reports the job's terminal outcome.

Tick sequence for a typical job:

    tick 1  no job id        -> submit, Suspend(1s)
    tick 2  STARTED          -> relay new stdout, Suspend(1s..20s)
    tick 3  FINISHED         -> relay rest of stdout + stderr, record result, Suspend(0)
    tick 4  result recorded  -> Done(Success | Failure), no remote calls

Usage:
    driver = PollDriver(client_factory, sink=sys.stdout.buffer)
    state = None
    while True:
        result = driver.tick(spec, state)
        if not result.suspend:
            break
        state = result.state
        time.sleep(result.delay_seconds)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Callable, Optional, Union

from core.constants import (
    DEFAULT_MIN_POLL_INTERVAL,
    DEFAULT_MAX_POLL_INTERVAL,
    MAX_FETCH_FILE_LENGTH,
    STDOUT,
    STDERR,
)
from retz_engine.jobs.backoff import next_delay
from retz_engine.jobs.client import ClientFactory, RemoteJobClient
from retz_engine.jobs.errors import IllegalRemoteState, SubmitError, TransportError
from retz_engine.jobs.finalizer import Outcome, finalize
from retz_engine.jobs.log_relay import Sink, drain
from retz_engine.jobs.models import JobSpec, JobState, RemoteJob, TaskContext
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.timeout_guard import check_timeout

logger = logging.getLogger(__name__)


@dataclass
class Suspend:
    """Call the driver again after ``delay_seconds`` with ``state``."""
    delay_seconds: int
    state: DriverState = field(default_factory=DriverState)

    suspend = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suspend": True,
            "delay_seconds": self.delay_seconds,
            "state": self.state.to_dict(),
        }


@dataclass
class Done:
    """The job is over; ``outcome`` says how it ended."""
    outcome: Outcome

    suspend = False

    @property
    def success(self) -> bool:
        return self.outcome.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suspend": False,
            "success": self.outcome.success,
            "job_id": self.outcome.job_id,
            "message": self.outcome.message,
        }


TickResult = Union[Suspend, Done]


class PollDriver:
    """
    State machine driving one remote job across ticks.

    The driver holds configuration only. Everything that must survive a
    suspend is in the DriverState passed to and returned from ``tick``.

    Example:
        >>> driver = PollDriver(lambda: HttpJobClient(uri), sink=BufferSink())
        >>> result = driver.tick(spec, None)
        >>> result.suspend, result.delay_seconds
        (True, 1)
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        sink: Sink,
        min_poll_interval: int = DEFAULT_MIN_POLL_INTERVAL,
        max_poll_interval: int = DEFAULT_MAX_POLL_INTERVAL,
        context: Optional[TaskContext] = None,
        verbose: bool = False,
        now: Optional[Callable[[], datetime]] = None,
        max_chunk_length: int = MAX_FETCH_FILE_LENGTH
    ):
        """
        Initialize driver.

        Args:
            client_factory: Opens one client session per tick
            sink: Destination for relayed stdout/stderr bytes
            min_poll_interval: Lower bound of the poll delay (seconds)
            max_poll_interval: Upper bound of the poll delay (seconds)
            context: Calling task, used in failure messages
            verbose: Log extra progress at INFO
            now: Clock for the timeout check (aware datetime)
            max_chunk_length: Largest get-file request
        """
        self.client_factory = client_factory
        self.sink = sink
        self.min_poll_interval = min_poll_interval
        self.max_poll_interval = max_poll_interval
        self.context = context
        self.verbose = verbose
        self.now = now
        self.max_chunk_length = max_chunk_length

    def tick(self, spec: JobSpec, state: Optional[DriverState] = None) -> TickResult:
        """
        Advance the job by one step.

        Args:
            spec: Job to run
            state: State returned by the previous tick, None on the first tick

        Returns:
            Suspend with the new state, or Done with the outcome

        Raises:
            SubmitError, NotFoundError, TransportError, TimeoutExceeded,
            IllegalRemoteState: fatal for this tick, never retried here
        """
        # Work on a copy so a failed tick leaves the caller's state untouched
        state = state.copy() if state is not None else DriverState()

        if state.is_finished:
            return Done(finalize(state, self.context))

        with self.client_factory() as client:
            if not state.is_submitted:
                job = self._submit(client, spec, state)
            else:
                job = self._get_job(client, state.job_id)
                state.record_observation(job)
            logger.debug("job: %r", job)

            result = self._process(client, spec, job, state)
            logger.debug("next polling: %r", state)
            return result

    # =========================================================================
    # Remote calls
    # =========================================================================

    def _submit(self, client: RemoteJobClient, spec: JobSpec, state: DriverState) -> RemoteJob:
        if self.verbose:
            logger.info("Job created: %s", spec.summary())

        try:
            job = client.submit(spec)
        except SubmitError:
            raise
        except TransportError as e:
            raise SubmitError(f"Failed to schedule job: {e}") from e

        if not isinstance(job, RemoteJob):
            raise SubmitError(f"Failed to schedule job: unexpected response {job!r}")

        logger.info("Job(id=%s) scheduled: %s", job.id, job.state.value)
        state.record_submission(job)
        return job

    def _get_job(self, client: RemoteJobClient, job_id: int) -> RemoteJob:
        job = client.get(job_id)
        if not isinstance(job, RemoteJob):
            raise TransportError(
                f"Job(id={job_id}) get received invalid response: {job!r}", job_id=job_id
            )
        if not isinstance(job.state, JobState):
            raise IllegalRemoteState(job.state, job_id=job_id)
        return job

    # =========================================================================
    # State handling
    # =========================================================================

    def _process(
        self,
        client: RemoteJobClient,
        spec: JobSpec,
        job: RemoteJob,
        state: DriverState
    ) -> TickResult:
        if job.state == JobState.QUEUED:
            check_timeout(client, job, spec.timeout_minutes, now=self.now)
            return self._next_polling(state)

        if job.state in (JobState.STARTING, JobState.STARTED):
            check_timeout(client, job, spec.timeout_minutes, now=self.now)
            self._relay_stdout(client, job, state)
            return self._next_polling(state)

        if job.state in (JobState.FINISHED, JobState.KILLED):
            if job.result is None:
                raise TransportError(
                    f"Job(id={job.id}) reported {job.state.value} without a result code",
                    job_id=job.id
                )
            self._relay_stdout(client, job, state)
            if self.verbose:
                logger.info("Job(id=%s) finished to get stdout, will get stderr", job.id)
            # stderr is read once, from the beginning, in the terminal tick
            drain(client, job.id, STDERR, 0, self.sink, self.max_chunk_length)
            return self._finish(job, state)

        raise IllegalRemoteState(job.state, job_id=job.id)

    def _relay_stdout(self, client: RemoteJobClient, job: RemoteJob, state: DriverState) -> None:
        bytes_read = drain(client, job.id, STDOUT, state.offset, self.sink, self.max_chunk_length)
        state.advance(bytes_read)

    def _next_polling(self, state: DriverState) -> Suspend:
        interval = next_delay(state.poll_iteration, self.min_poll_interval, self.max_poll_interval)
        state.poll_iteration += 1
        return Suspend(delay_seconds=interval, state=state)

    def _finish(self, job: RemoteJob, state: DriverState) -> Suspend:
        elapsed = job.elapsed_seconds
        logger.info("Job(id=%s) finished in %s seconds. status: %s",
                    job.id, "-" if elapsed is None else elapsed, job.state.value)

        state.record_result(job)
        # Zero delay: report the outcome on the next tick without remote calls
        return Suspend(delay_seconds=0, state=state)
