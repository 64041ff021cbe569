"""
Command-line client runner for the non-resumable execution mode.

Instead of talking to the remote service directly, this mode shells out to
the local command-line client (``retz-client run ...``), which submits the
job, streams its output and exits with the job's result code. The whole job
runs inside one blocking call; there is no persisted offset or job id.

Usage:
    runner = CliRunner(task_config, sink=sys.stdout.buffer)
    result = runner.run()
    if not result.success:
        print(result.error_message)
"""

import logging
import os
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from retz_engine.jobs.errors import ConfigError, TimeoutExceeded, TransportError
from retz_engine.jobs.log_relay import Sink
from retz_engine.jobs.task_config import TaskConfig, is_valid_env_key

logger = logging.getLogger(__name__)

# Bytes read from the client's stdout per pump iteration
PUMP_CHUNK_SIZE = 8192


@dataclass
class CliResult:
    """Result of one command-line client run."""
    success: bool
    exit_code: Optional[int]
    error_message: Optional[str] = None


class CliRunner:
    """
    Runs the command-line client to completion.

    Output (stdout with stderr merged) is copied to the sink by a pump
    thread while the calling thread waits for the process, so the local
    deadline is enforced even when the client prints nothing.

    Example:
        >>> runner = CliRunner(task_config, sink=BufferSink())
        >>> runner.build_command()
        ['/opt/retz-client/bin/retz-client', 'run', '-A', 'batch', ...]
    """

    # Wait after SIGTERM before SIGKILL
    TERMINATE_TIMEOUT = 5.0

    def __init__(self, config: TaskConfig, sink: Sink):
        """
        Initialize runner.

        Args:
            config: Validated task configuration
            sink: Destination for the client's output
        """
        self.config = config
        self.sink = sink
        self._process: Optional[subprocess.Popen] = None

    # =========================================================================
    # Command line
    # =========================================================================

    def build_command(self) -> List[str]:
        """
        Build the client command line.

        Resource options are only passed when set in the task config, so the
        client's own defaults apply otherwise.

        Raises:
            ConfigError: If a setting is invalid
        """
        config = self.config
        command = [os.path.abspath(config.client_cmd)]

        client_config = config.client_config
        if client_config:
            command += ["-C", client_config]
        if config.verbose:
            command.append("-v")

        command.append("run")
        command += ["-A", config.appname]
        command += ["-N", config.name]

        if config.has("cpu"):
            command += ["--cpu", str(config.cpu)]
        if config.has("mem"):
            command += ["--mem", str(config.mem_mb)]
        if config.has("disk"):
            command += ["--disk", str(config.disk_mb)]
        if config.has("ports"):
            command += ["--ports", str(config.ports)]
        if config.has("gpu"):
            command += ["--gpu", str(config.gpu)]
        if config.has("priority"):
            command += ["--prio", str(config.priority)]
        if config.stderr:
            command.append("--stderr")
        if config.has("timeout"):
            command += ["--timeout", str(config.timeout_minutes)]

        for key, value in config.env.items():
            command += ["-E", f"{key}={value}"]

        if config.has("tags"):
            command += ["--tags", ",".join(config.tags)]

        command += ["-c", config.command]
        return command

    def build_env(self) -> Dict[str, str]:
        """
        Process environment for the client.

        Raises:
            ConfigError: If a secret name is not a valid variable name
        """
        env = dict(os.environ)
        env.update(self.config.env_vars())
        for name, value in self.config.context.secrets.items():
            if not is_valid_env_key(name):
                raise ConfigError(f"Invalid _env key name: {name}")
            env[name] = value
        return env

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self) -> CliResult:
        """
        Run the client and wait for it to exit.

        Returns:
            CliResult with the exit code

        Raises:
            TimeoutExceeded: The local deadline passed (the client was killed)
            TransportError: The client could not be started
        """
        command = self.build_command()
        env = self.build_env()
        workspace = Path(self.config.context.workspace)
        timeout_minutes = self.config.timeout_minutes

        logger.info("Running in retz_run: %s", " ".join(shlex.quote(part) for part in command))

        try:
            self._process = subprocess.Popen(
                command,
                cwd=str(workspace),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise TransportError(f"Failed to start client {command[0]}: {e}") from e

        pump = threading.Thread(target=self._pump_output, name="retz-cli-pump", daemon=True)
        pump.start()

        deadline = time.monotonic() + timeout_minutes * 60 if timeout_minutes > 0 else None
        try:
            exit_code = self._wait(deadline)
            if exit_code is None:
                self.terminate()
                raise TimeoutExceeded(None, timeout_minutes)
        finally:
            pump.join(timeout=self.TERMINATE_TIMEOUT)
            if self._process.stdout:
                self._process.stdout.close()

        if exit_code != 0:
            message = f"retz_run: command failed with code {exit_code}"
            logger.error(message)
            return CliResult(success=False, exit_code=exit_code, error_message=message)

        logger.info("retz_run: command finished successfully")
        return CliResult(success=True, exit_code=exit_code)

    def _wait(self, deadline: Optional[float]) -> Optional[int]:
        """Wait for exit. Returns None if the deadline passed first."""
        if deadline is None:
            return self._process.wait()
        try:
            return self._process.wait(timeout=max(deadline - time.monotonic(), 0))
        except subprocess.TimeoutExpired:
            return None

    def _pump_output(self) -> None:
        stream = self._process.stdout
        while True:
            data = stream.read1(PUMP_CHUNK_SIZE) if hasattr(stream, "read1") else stream.read(PUMP_CHUNK_SIZE)
            if not data:
                break
            self.sink.write(data)

    def terminate(self) -> bool:
        """
        Stop the client process.

        Sends SIGTERM, then SIGKILL if the process does not exit in time.

        Returns:
            True if the process is gone, False if it was not running
        """
        if self._process is None or self._process.poll() is not None:
            return False

        logger.warning("Terminating client process (pid=%d)", self._process.pid)
        self._process.terminate()
        try:
            self._process.wait(timeout=self.TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("Client did not respond to SIGTERM, sending SIGKILL")
            self._process.kill()
            self._process.wait()
        return True
