"""
Terminal outcome reporting.

Maps the result code recorded in DriverState to the caller-visible
Success / Failure outcome.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional, Union

from core.constants import CONFIG_ROOT_KEY, LAST_JOB_ID_KEY
from retz_engine.jobs.models import TaskContext
from retz_engine.jobs.state import DriverState


@dataclass
class Success:
    """The job finished with result 0."""
    job_id: Optional[int]
    message: str = ""

    success = True

    def __post_init__(self):
        if not self.message:
            self.message = f"Job(id={self.job_id}) succeeded."

    def store_params(self) -> Dict[str, Any]:
        """Parameters exported to downstream tasks."""
        return {CONFIG_ROOT_KEY: {LAST_JOB_ID_KEY: self.job_id}}


@dataclass
class Failure:
    """The job finished with a non-zero result or was killed."""
    job_id: Optional[int]
    job_state: Optional[str]
    reason: Optional[str]
    message: str = ""

    success = False

    def __post_init__(self):
        if not self.message:
            self.message = (
                f"Job(id={self.job_id}) failed. "
                f"| state={self.job_state}, reason={self.reason}"
            )


Outcome = Union[Success, Failure]


def finalize(state: DriverState, context: Optional[TaskContext] = None) -> Outcome:
    """
    Convert a finished DriverState into an outcome.

    Args:
        state: State with ``result`` set
        context: Calling task, appended to failure messages for log lookup

    Returns:
        Success if result == 0, Failure otherwise

    Raises:
        ValueError: If no result has been recorded yet
    """
    if state.result is None:
        raise ValueError(f"Job(id={state.job_id}) has no recorded result")

    if state.result == 0:
        return Success(job_id=state.job_id)

    failure = Failure(job_id=state.job_id, job_state=state.job_state, reason=state.reason)
    if context is not None:
        failure.message += f" | attempt={context.attempt_id}, task={context.task_name}"
    return failure
