"""
Tick runner: the caller loop around an execution mode.

This module provides the TaskRunner class that:
- Loads the persisted DriverState of a task
- Calls the execution mode's ``tick`` and saves every Suspend's state
- Sleeps for the requested delay between ticks
- Clears the state and returns the outcome once the mode reports Done
- Stops between ticks on SIGTERM/SIGINT, leaving the state for a later run

Usage:
    python -m retz_engine.jobs --task task.yaml --attempt-id 12345 \\
        --task-name build --client-factory mypkg.retz:make_client
"""

import argparse
import functools
import importlib
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Dict, Any, Callable, Optional

import yaml

from core.config import load_config, merge_configs, parse_cli_overrides
from core.constants import DEFAULT_SYSTEM_CONFIG, STATE_DIR
from core.logger import create_task_logger, log_config, setup_logger
from retz_engine.jobs.client import ClientFactory
from retz_engine.jobs.driver import Done, Suspend
from retz_engine.jobs.errors import ConfigError, DriverError
from retz_engine.jobs.finalizer import Outcome
from retz_engine.jobs.log_relay import TeeSink
from retz_engine.jobs.models import TaskContext
from retz_engine.jobs.modes import ExecutionMode, get_execution_mode
from retz_engine.jobs.state_store import FileStateStore, StateStore
from retz_engine.jobs.task_config import SystemSettings, TaskConfig

logger = logging.getLogger(__name__)

# Process exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 3


class TaskRunner:
    """
    Drives one task to completion, one tick at a time.

    Example:
        >>> runner = TaskRunner(mode, FileStateStore("state"), key="12345-build")
        >>> outcome = runner.run()  # Blocks until Done or SIGTERM/SIGINT
        >>> outcome.success
        True
    """

    def __init__(
        self,
        mode: ExecutionMode,
        store: StateStore,
        key: str,
        sleep: Optional[Callable[[float], None]] = None,
        handle_signals: bool = True
    ):
        """
        Initialize runner.

        Args:
            mode: Execution mode to tick
            store: Where the state is kept between ticks
            key: Task key in the store
            sleep: Delay function, defaults to time.sleep
            handle_signals: Install SIGTERM/SIGINT handlers (main thread only)
        """
        self.mode = mode
        self.store = store
        self.key = key
        self.sleep = sleep or time.sleep
        self.ticks = 0
        self._shutdown_requested = False

        if handle_signals:
            signal.signal(signal.SIGTERM, self._handle_signal)
            signal.signal(signal.SIGINT, self._handle_signal)

    def _handle_signal(self, signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info("Received signal %s, stopping after the current tick...", signum)
        self._shutdown_requested = True

    def request_shutdown(self):
        self._shutdown_requested = True

    def run(self) -> Optional[Outcome]:
        """
        Tick until the mode reports Done.

        Returns:
            The outcome, or None if shutdown was requested first

        Raises:
            DriverError: Any error raised by a tick or the store
        """
        logger.info("Runner starting for %s", self.key)

        while not self._shutdown_requested:
            state = self.store.load(self.key)
            self.ticks += 1
            logger.debug("Tick %d for %s: %r", self.ticks, self.key, state)

            result = self.mode.tick(state)

            if isinstance(result, Done):
                self.store.clear(self.key)
                self._log_outcome(result.outcome)
                return result.outcome

            if not isinstance(result, Suspend):
                raise TypeError(f"Execution mode returned {result!r}")

            self.store.save(self.key, result.state)
            if self._shutdown_requested:
                break
            if result.delay_seconds > 0:
                self.sleep(result.delay_seconds)

        logger.info("Runner for %s stopped; state saved for resume", self.key)
        return None

    def _log_outcome(self, outcome: Outcome):
        if outcome.success:
            logger.info(outcome.message)
        else:
            logger.error(outcome.message)


def load_client_factory(reference: str, client_settings: Dict[str, Any]) -> ClientFactory:
    """
    Resolve ``module:callable`` into a zero-argument client factory.

    The callable receives the system client settings (server_uri,
    credentials, ...) as its only argument and must return a RemoteJobClient.

    Raises:
        ConfigError: If the reference cannot be resolved
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"--client-factory must be 'module:callable': {reference}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import client factory module '{module_name}': {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Client factory '{reference}' is not callable")
    return functools.partial(factory, dict(client_settings))


def parse_overrides(items) -> Dict[str, Any]:
    """Turn ``--set a.b=value`` items into a nested config dict."""
    try:
        return parse_cli_overrides(items)
    except ValueError as e:
        raise ConfigError(f"--set: {e}") from e


def build_store(args: argparse.Namespace) -> StateStore:
    if args.redis_url:
        # Imported here so file-backed runs do not need a Redis server
        from retz_engine.jobs.redis_store import RedisStateStore
        return RedisStateStore(redis_url=args.redis_url)
    return FileStateStore(args.state_dir)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a task as a remote job")
    parser.add_argument("--task", required=True,
                       help="Task config YAML file")
    parser.add_argument("--system", default=str(DEFAULT_SYSTEM_CONFIG),
                       help="System config YAML file")
    parser.add_argument("--attempt-id", required=True,
                       help="Attempt ID of the calling task")
    parser.add_argument("--task-name", required=True,
                       help="Name of the calling task")
    parser.add_argument("--workspace", default=".",
                       help="Working directory of the task")
    parser.add_argument("--set", dest="overrides", action="append", default=[],
                       help="Task config override, e.g. --set retz.cpu=2")
    store_group = parser.add_mutually_exclusive_group()
    store_group.add_argument("--state-dir", default=str(STATE_DIR),
                       help="Directory for persisted state files")
    store_group.add_argument("--redis-url", default=None,
                       help="Keep state in Redis instead of files")
    parser.add_argument("--client-factory", default=None,
                       help="module:callable returning a RemoteJobClient (api mode)")
    parser.add_argument("--log-level", default="INFO",
                       choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                       help="Log level")
    log_group = parser.add_mutually_exclusive_group()
    log_group.add_argument("--log-file", default=None,
                       help="Also write logs to this file")
    log_group.add_argument("--log-dir", default=None,
                       help="Also write logs to a per-attempt file in this directory")
    return parser.parse_args(argv)


def run_task(args: argparse.Namespace) -> int:
    """Build the runner from parsed arguments, run it and map the result to an exit code."""
    try:
        task_data = load_config(args.task)
        # A missing system file means built-in defaults
        system_data = load_config(args.system) if Path(args.system).exists() else {}
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(str(e)) from e
    if args.overrides:
        task_data = merge_configs(task_data, parse_overrides(args.overrides))

    context = TaskContext(
        attempt_id=args.attempt_id,
        task_name=args.task_name,
        workspace=args.workspace,
    )
    config = TaskConfig(task_data, context)
    settings = SystemSettings.from_dict(system_data)
    log_config(logger, config.summary(), title="Task Configuration")

    client_factory = None
    if args.client_factory:
        client_factory = load_client_factory(args.client_factory, settings.client)

    sink = TeeSink(sys.stdout.buffer)
    mode = get_execution_mode(config, settings, sink, client_factory=client_factory)

    store = build_store(args)
    try:
        runner = TaskRunner(mode, store, key=f"{args.attempt_id}-{args.task_name}")
        outcome = runner.run()
    finally:
        store.close()

    if outcome is None:
        return EXIT_INTERRUPTED
    return EXIT_SUCCESS if outcome.success else EXIT_FAILURE


def main(argv=None):
    """Entry point for the runner process."""
    args = parse_args(argv)

    level = getattr(logging, args.log_level)
    if args.log_dir:
        create_task_logger(Path(args.log_dir), args.attempt_id, level=level)
    else:
        setup_logger(name="retz_engine", log_file=args.log_file, level=level)

    try:
        exit_code = run_task(args)
    except DriverError as e:
        logger.error("%s: %s", type(e).__name__, e)
        exit_code = EXIT_ERROR
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
