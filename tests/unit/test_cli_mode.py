"""
Unit tests for the command-line client mode.

Tests:
- CliRunner command line and environment
- CliRunner execution with a mocked subprocess
- Execution mode selection
"""

import io
import subprocess
import warnings
from unittest.mock import MagicMock, patch

import pytest

from retz_engine.jobs.cli_runner import CliResult, CliRunner
from retz_engine.jobs.driver import Done
from retz_engine.jobs.errors import ConfigError, TimeoutExceeded, TransportError
from retz_engine.jobs.finalizer import Failure, Success
from retz_engine.jobs.log_relay import BufferSink
from retz_engine.jobs.models import TaskContext
from retz_engine.jobs.modes import ApiMode, CliMode, get_execution_mode
from retz_engine.jobs.state import DriverState
from retz_engine.jobs.task_config import SystemSettings, TaskConfig

CLIENT = "/opt/retz-client/bin/retz-client"


def make_config(secrets=None, **overrides):
    config = {"appname": "batch", "_command": "ls -l", "client_mode": "cli"}
    config.update(overrides)
    context = TaskContext(attempt_id=12345, task_name="build", workspace="/tmp",
                          secrets=secrets or {})
    return TaskConfig(config, context)


def mock_process(output=b"", wait_result=0):
    process = MagicMock()
    process.stdout = io.BytesIO(output)
    process.pid = 4242
    process.wait.return_value = wait_result
    process.poll.return_value = wait_result
    return process


class TestBuildCommand:
    """Test the client command line."""

    def test_minimal(self):
        """Test the command line for a minimal task."""
        runner = CliRunner(make_config(), BufferSink())
        assert runner.build_command() == [
            CLIENT, "run", "-A", "batch", "-N", "12345:build", "--stderr", "-c", "ls -l",
        ]

    def test_only_explicit_resources_are_passed(self):
        """Test only explicitly set resources become flags."""
        runner = CliRunner(make_config(cpu=2, mem="1GB", ports=3, priority=1, timeout=30,
                                       env=["A=1", "B=2"], tags=["x", "y"], stderr=False),
                           BufferSink())
        assert runner.build_command() == [
            CLIENT, "run", "-A", "batch", "-N", "12345:build",
            "--cpu", "2", "--mem", "1024", "--ports", "3", "--prio", "1",
            "--timeout", "30", "-E", "A=1", "-E", "B=2", "--tags", "x,y", "-c", "ls -l",
        ]

    def test_client_config_and_verbose_precede_run(self):
        """Test global options come before the run subcommand."""
        runner = CliRunner(make_config(client_config="retz.properties", verbose=True),
                           BufferSink())
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            command = runner.build_command()
        assert command[:5] == [CLIENT, "-C", "/tmp/retz.properties", "-v", "run"]

    def test_invalid_config_fails_before_running(self):
        """Test config errors are raised before the client starts."""
        runner = CliRunner(make_config(ports=5000), BufferSink())
        with patch("retz_engine.jobs.cli_runner.subprocess.Popen") as mock_popen:
            with pytest.raises(ConfigError):
                runner.run()
        mock_popen.assert_not_called()


class TestBuildEnv:
    """Test the client process environment."""

    def test_string_config_values_and_secrets(self):
        """Test string config values and secrets are exported."""
        runner = CliRunner(make_config(secrets={"RETZ_TOKEN": "s3cret"}, REGION="jp"),
                           BufferSink())
        env = runner.build_env()
        assert env["REGION"] == "jp"
        assert env["RETZ_TOKEN"] == "s3cret"

    def test_invalid_secret_name(self):
        """Test an invalid secret name is rejected."""
        runner = CliRunner(make_config(secrets={"bad-name": "x"}), BufferSink())
        with pytest.raises(ConfigError, match="Invalid _env key name"):
            runner.build_env()


class TestRun:
    """Test running the client."""

    @patch("retz_engine.jobs.cli_runner.subprocess.Popen")
    def test_success_relays_output(self, mock_popen):
        """Test client output is relayed on a zero exit."""
        mock_popen.return_value = mock_process(b"hello\nworld\n", 0)
        sink = BufferSink()

        result = CliRunner(make_config(), sink).run()

        assert result == CliResult(success=True, exit_code=0)
        assert sink.getvalue() == b"hello\nworld\n"
        _, kwargs = mock_popen.call_args
        assert kwargs["cwd"] == "/tmp"
        assert kwargs["stderr"] == subprocess.STDOUT

    @patch("retz_engine.jobs.cli_runner.subprocess.Popen")
    def test_non_zero_exit(self, mock_popen):
        """Test a non-zero client exit code."""
        mock_popen.return_value = mock_process(b"", 3)
        result = CliRunner(make_config(), BufferSink()).run()
        assert not result.success
        assert result.exit_code == 3
        assert result.error_message == "retz_run: command failed with code 3"

    @patch("retz_engine.jobs.cli_runner.subprocess.Popen")
    def test_timeout_terminates_client(self, mock_popen):
        """Test the client is terminated at the deadline."""
        process = mock_process()
        process.poll.return_value = None
        process.wait.side_effect = [subprocess.TimeoutExpired("retz-client", 60), -15]
        mock_popen.return_value = process

        with pytest.raises(TimeoutExceeded):
            CliRunner(make_config(timeout=1), BufferSink()).run()
        process.terminate.assert_called_once()

    @patch("retz_engine.jobs.cli_runner.subprocess.Popen")
    def test_missing_binary(self, mock_popen):
        """Test a missing client binary."""
        mock_popen.side_effect = FileNotFoundError("no such file")
        with pytest.raises(TransportError):
            CliRunner(make_config(), BufferSink()).run()


class TestExecutionModes:
    """Test mode selection and the cli mode tick."""

    def test_api_mode_requires_client_factory(self):
        """Test api mode without a client factory."""
        config = make_config(client_mode="api")
        with pytest.raises(ConfigError):
            get_execution_mode(config, SystemSettings(), BufferSink())

    def test_api_mode(self, scheduler):
        """Test api mode ticks the poll driver."""
        config = make_config(client_mode="api", timeout=0)
        mode = get_execution_mode(config, SystemSettings(min_poll_interval=2), BufferSink(),
                                  client_factory=scheduler.client)
        assert isinstance(mode, ApiMode)
        assert mode.resumable
        result = mode.tick(None)
        assert result.suspend
        assert result.delay_seconds == 2

    def test_cli_mode_success(self):
        """Test cli mode reports Done on the first tick."""
        mode = get_execution_mode(make_config(), SystemSettings(), BufferSink())
        assert isinstance(mode, CliMode)
        assert not mode.resumable
        with patch.object(mode.runner, "run", return_value=CliResult(True, 0)):
            result = mode.tick(None)
        assert isinstance(result, Done)
        assert isinstance(result.outcome, Success)
        assert result.outcome.job_id is None

    def test_cli_mode_failure_message(self):
        """Test the failure message of cli mode."""
        mode = get_execution_mode(make_config(), SystemSettings(), BufferSink())
        failed = CliResult(False, 2, "retz_run: command failed with code 2")
        with patch.object(mode.runner, "run", return_value=failed):
            result = mode.tick(DriverState(job_id=5))
        assert isinstance(result.outcome, Failure)
        assert result.outcome.message == (
            "retz_run: command failed with code 2 | attempt=12345, task=build"
        )
