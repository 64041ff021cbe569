"""
Wall-clock timeout enforcement for remote jobs.

The deadline is measured from the job's ``scheduled`` timestamp as reported
by the remote service, so it survives any number of suspends and process
restarts without storing a local start time.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from retz_engine.jobs.client import RemoteJobClient
from retz_engine.jobs.errors import KillFailedError, TimeoutExceeded, TransportError
from retz_engine.jobs.models import RemoteJob, parse_timestamp

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def deadline_for(job: RemoteJob, timeout_minutes: int) -> Optional[datetime]:
    """
    Compute the kill deadline for a job.

    Returns:
        ``scheduled + timeout_minutes``, or None when the timeout is disabled

    Raises:
        TransportError: If the scheduled timestamp is missing or unparseable
    """
    if timeout_minutes <= 0:
        return None
    try:
        scheduled = parse_timestamp(job.scheduled)
    except ValueError as e:
        raise TransportError(
            f"Job(id={job.id}) has an invalid scheduled timestamp: {job.scheduled!r}",
            job_id=job.id,
        ) from e
    if scheduled is None:
        raise TransportError(f"Job(id={job.id}) has no scheduled timestamp", job_id=job.id)
    return scheduled + timedelta(minutes=timeout_minutes)


def check_timeout(
    client: RemoteJobClient,
    job: RemoteJob,
    timeout_minutes: int,
    now: Optional[Callable[[], datetime]] = None
) -> None:
    """
    Kill the job and fail the tick if it is past its deadline.

    Args:
        client: Open client session
        job: Current job snapshot
        timeout_minutes: Limit in minutes, 0 or less disables the check
        now: Clock returning an aware datetime (defaults to UTC now)

    Raises:
        TimeoutExceeded: The deadline has passed and the job was killed
        KillFailedError: The deadline has passed and the kill failed
    """
    deadline = deadline_for(job, timeout_minutes)
    if deadline is None:
        return

    current = (now or utc_now)()
    if current <= deadline:
        return

    logger.warning("Job(id=%s) exceeded its %d minute timeout (deadline %s), killing",
                   job.id, timeout_minutes, deadline.isoformat())
    timeout = TimeoutExceeded(job.id, timeout_minutes)
    try:
        client.kill(job.id)
    except TransportError as e:
        logger.error("Job(id=%s) failed to kill timed-out job: %s", job.id, e)
        raise KillFailedError(
            f"Job(id={job.id}) failed to kill timed-out job: {e}", job_id=job.id
        ) from timeout
    raise timeout
