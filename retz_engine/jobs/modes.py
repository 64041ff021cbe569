"""
Execution modes.

A task runs in one of two modes, selected by ``client_mode``:

- ``api``: PollDriver talks to the remote service through a RemoteJobClient.
  Resumable: each tick returns quickly and the state survives restarts.
- ``cli``: CliRunner shells out to the command-line client and blocks until
  the job is over. Not resumable: the first tick returns Done.

Both expose the same ``tick(state) -> Suspend | Done`` contract so the
caller loop does not care which one it drives.

Adding a mode only requires an entry in EXECUTION_MODES.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type

from core.constants import CLIENT_MODE_API, CLIENT_MODE_CLI
from retz_engine.jobs.cli_runner import CliRunner
from retz_engine.jobs.client import ClientFactory
from retz_engine.jobs.driver import Done, PollDriver, TickResult
from retz_engine.jobs.errors import ConfigError
from retz_engine.jobs.finalizer import Failure, Success
from retz_engine.jobs.log_relay import Sink
from retz_engine.jobs.models import JobSpec
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.task_config import SystemSettings, TaskConfig

logger = logging.getLogger(__name__)


class ExecutionMode(ABC):
    """
    Abstract base class for execution modes.

    Example:
        mode = get_execution_mode(task_config, settings, sink, client_factory)
        result = mode.tick(None)
    """

    resumable = True

    def __init__(self, config: TaskConfig, settings: SystemSettings, sink: Sink):
        self.config = config
        self.settings = settings
        self.sink = sink
        self._spec: Optional[JobSpec] = None

    @property
    def spec(self) -> JobSpec:
        """The job to run, validated once."""
        if self._spec is None:
            self._spec = self.config.build_spec()
        return self._spec

    @abstractmethod
    def tick(self, state: Optional[DriverState]) -> TickResult:
        """
        Advance the task by one step.

        Args:
            state: State from the previous Suspend, None on the first tick
        """


class ApiMode(ExecutionMode):
    """Resumable polling through a RemoteJobClient."""

    def __init__(
        self,
        config: TaskConfig,
        settings: SystemSettings,
        sink: Sink,
        client_factory: Optional[ClientFactory] = None
    ):
        super().__init__(config, settings, sink)
        if client_factory is None:
            raise ConfigError("retz: client_mode 'api' requires a client factory")
        self.driver = PollDriver(
            client_factory=client_factory,
            sink=sink,
            min_poll_interval=settings.min_poll_interval,
            max_poll_interval=settings.max_poll_interval,
            context=config.context,
            verbose=config.verbose,
        )

    def tick(self, state: Optional[DriverState]) -> TickResult:
        return self.driver.tick(self.spec, state)


class CliMode(ExecutionMode):
    """Blocking run of the command-line client. Ignores persisted state."""

    resumable = False

    def __init__(
        self,
        config: TaskConfig,
        settings: SystemSettings,
        sink: Sink,
        client_factory: Optional[ClientFactory] = None
    ):
        super().__init__(config, settings, sink)
        self.runner = CliRunner(config, sink)

    def tick(self, state: Optional[DriverState]) -> TickResult:
        if state is not None and state.is_submitted:
            logger.warning("Ignoring persisted state %r: cli mode cannot resume", state)

        result = self.runner.run()
        if result.success:
            return Done(Success(job_id=None, message="retz_run: command finished successfully"))

        message = result.error_message
        context = self.config.context
        message += f" | attempt={context.attempt_id}, task={context.task_name}"
        return Done(Failure(job_id=None, job_state=None, reason=result.error_message, message=message))


# Registry of client_mode -> mode class
EXECUTION_MODES: Dict[str, Type[ExecutionMode]] = {
    CLIENT_MODE_API: ApiMode,
    CLIENT_MODE_CLI: CliMode,
}


def get_execution_mode(
    config: TaskConfig,
    settings: SystemSettings,
    sink: Sink,
    client_factory: Optional[ClientFactory] = None
) -> ExecutionMode:
    """
    Get the execution mode for a task.

    Args:
        config: Task configuration (``client_mode`` selects the mode)
        settings: System settings
        sink: Destination for job output
        client_factory: Required for ``api`` mode

    Returns:
        Instantiated execution mode

    Raises:
        ConfigError: If client_mode is not registered
    """
    mode_name = config.client_mode
    mode_cls = EXECUTION_MODES.get(mode_name)
    if mode_cls is None:
        available = ", ".join(EXECUTION_MODES.keys())
        raise ConfigError(f"retz: invalid client_mode: {mode_name}. Available: {available}")
    return mode_cls(config, settings, sink, client_factory=client_factory)
