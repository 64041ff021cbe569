"""
Task configuration for remote jobs.

Turns the human-authored task configuration (YAML) into a JobSpec and the
settings the execution modes need. All validation happens here, before any
remote call, and every problem is reported as ConfigError.

Task config example:
    retz:                      # defaults, e.g. shared by a whole workflow
      appname: batch
      mem: 2GB
    _command: ./run.sh --date 2024-01-01
    cpu: 4
    timeout: 90
    tags: [nightly]

System config example (configs/defaults/system.yaml):
    retz:
      min_poll_interval: 1
      max_poll_interval: 20
      server_uri: http://retz.example.com:9090
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional

from deprecated import deprecated

from core.config import merge_configs
from core.constants import (
    CLIENT_MODE_API,
    CLIENT_MODE_CLI,
    CONFIG_ROOT_KEY,
    DEFAULT_CLIENT_CMD,
    DEFAULT_CLIENT_MODE,
    DEFAULT_CPU,
    DEFAULT_DISK,
    DEFAULT_GPU,
    DEFAULT_MAX_POLL_INTERVAL,
    DEFAULT_MEM,
    DEFAULT_MIN_POLL_INTERVAL,
    DEFAULT_PORTS,
    DEFAULT_PRIORITY,
    DEFAULT_TIMEOUT_MINUTES,
    MAX_PORTS,
    SIZE_UNITS_MB,
)
from retz_engine.jobs.errors import ConfigError
from retz_engine.jobs.models import JobSpec, TaskContext
from retz_engine.jobs.naming import default_job_name

logger = logging.getLogger(__name__)

CLIENT_MODES = (CLIENT_MODE_API, CLIENT_MODE_CLI)

SIZE_PATTERN = re.compile(r"(\d+)(\D*)")
VALID_ENV_KEY = re.compile(r"[a-zA-Z_][a-zA-Z_0-9]*")


def parse_size_mb(value: Any) -> int:
    """
    Convert a size string to MB.

    Accepts M/MB, G/GB, T/TB (case-insensitive); bare digits are MB.

    Example:
        >>> parse_size_mb("2g")
        2048
    """
    text = str(value).strip()
    match = SIZE_PATTERN.fullmatch(text)
    if not match:
        raise ConfigError(f"retz: Invalid size: {value}")
    count = int(match.group(1))
    unit = match.group(2).strip().lower()
    if unit not in SIZE_UNITS_MB:
        raise ConfigError(f"retz: Invalid size (unsupported size unit): {value}")
    return count * SIZE_UNITS_MB[unit]


def parse_env_pairs(pairs: List[Any]) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a dict. The first ``=`` splits."""
    env: Dict[str, str] = {}
    for pair in pairs:
        text = str(pair)
        if "=" not in text:
            raise ConfigError(f"retz: env entry must be KEY=VALUE: {text}")
        key, value = text.split("=", 1)
        if not key:
            raise ConfigError(f"retz: env entry has an empty key: {text}")
        env[key] = value
    return env


def is_valid_env_key(key: str) -> bool:
    return bool(VALID_ENV_KEY.fullmatch(key))


@deprecated(reason="Set 'server_uri' in the system config instead of 'client_config'")
def resolve_client_config(path: str, workspace: str) -> str:
    """Resolve the legacy client config file path against the workspace."""
    if os.path.isabs(path):
        return path
    return str(Path(workspace) / path)


def _require_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"retz: '{key}' must be an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"retz: '{key}' must be an integer: {value!r}")


def _require_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigError(f"retz: '{key}' must be a boolean: {value!r}")


def _require_str_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"retz: '{key}' must be a list: {value!r}")
    return [str(item) for item in value]


@dataclass
class SystemSettings:
    """
    Installation-wide settings.

    Attributes:
        min_poll_interval: Lower bound of the poll delay (seconds)
        max_poll_interval: Upper bound of the poll delay (seconds)
        client: Connection settings handed to the client factory untouched
    """
    min_poll_interval: int = DEFAULT_MIN_POLL_INTERVAL
    max_poll_interval: int = DEFAULT_MAX_POLL_INTERVAL
    client: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SystemSettings":
        """Build from a system config mapping (optionally under ``retz:``)."""
        data = dict(data or {})
        section = data.get(CONFIG_ROOT_KEY, data)
        if not isinstance(section, Mapping):
            raise ConfigError(f"'{CONFIG_ROOT_KEY}' section of the system config must be a mapping")

        min_interval = _require_int(
            section.get("min_poll_interval", DEFAULT_MIN_POLL_INTERVAL), "min_poll_interval")
        max_interval = _require_int(
            section.get("max_poll_interval", DEFAULT_MAX_POLL_INTERVAL), "max_poll_interval")
        if min_interval < 0 or max_interval < 0:
            raise ConfigError("retz: poll intervals must not be negative")

        client = {
            key: value for key, value in section.items()
            if key not in ("min_poll_interval", "max_poll_interval")
        }
        return cls(min_poll_interval=min_interval, max_poll_interval=max_interval, client=client)


class TaskConfig:
    """
    Validated view over one task's configuration.

    Example:
        >>> config = TaskConfig({"appname": "batch", "_command": "ls"}, context)
        >>> spec = config.build_spec()
        >>> spec.mem_mb
        32
    """

    def __init__(self, config: Mapping[str, Any], context: TaskContext):
        """
        Initialize task config.

        Args:
            config: Task configuration; a ``retz:`` section supplies defaults
            context: Calling task
        """
        config = dict(config or {})
        defaults = config.pop(CONFIG_ROOT_KEY, None) or {}
        if not isinstance(defaults, Mapping):
            raise ConfigError(f"'{CONFIG_ROOT_KEY}' section of the task config must be a mapping")
        self.raw: Dict[str, Any] = merge_configs(dict(defaults), config)
        self.context = context

    def has(self, key: str) -> bool:
        return key in self.raw and self.raw[key] is not None

    def _get(self, key: str, default: Any = None) -> Any:
        """Value of ``key``; an explicit null counts as unset."""
        return self.raw[key] if self.has(key) else default

    # =========================================================================
    # Settings
    # =========================================================================

    @property
    def client_mode(self) -> str:
        mode = str(self._get("client_mode", DEFAULT_CLIENT_MODE))
        if mode not in CLIENT_MODES:
            raise ConfigError(f"retz: invalid client_mode: {mode}")
        return mode

    @property
    def client_config(self) -> Optional[str]:
        if not self.has("client_config"):
            return None
        return resolve_client_config(str(self.raw["client_config"]), self.context.workspace)

    @property
    def appname(self) -> str:
        if not self.has("appname"):
            raise ConfigError("retz: 'appname' config is required")
        return str(self.raw["appname"])

    @property
    def command(self) -> str:
        for key in ("_command", "command"):
            if self.has(key):
                return str(self.raw[key])
        raise ConfigError("retz: remote command ('_command') is required")

    @property
    def env(self) -> Dict[str, str]:
        return parse_env_pairs(_require_str_list(self._get("env"), "env"))

    @property
    def cpu(self) -> int:
        return _require_int(self._get("cpu", DEFAULT_CPU), "cpu")

    @property
    def mem_mb(self) -> int:
        return parse_size_mb(self._get("mem", DEFAULT_MEM))

    @property
    def disk_mb(self) -> int:
        return parse_size_mb(self._get("disk", DEFAULT_DISK))

    @property
    def gpu(self) -> int:
        return _require_int(self._get("gpu", DEFAULT_GPU), "gpu")

    @property
    def ports(self) -> int:
        ports = _require_int(self._get("ports", DEFAULT_PORTS), "ports")
        if ports < 0 or ports > MAX_PORTS:
            raise ConfigError(f"retz: --ports must be within 0 to {MAX_PORTS}: {ports}")
        return ports

    @property
    def priority(self) -> int:
        return _require_int(self._get("priority", DEFAULT_PRIORITY), "priority")

    @property
    def name(self) -> str:
        if self.has("name"):
            return str(self.raw["name"])
        return default_job_name(str(self.context.attempt_id), self.context.task_name)

    @property
    def tags(self) -> List[str]:
        return _require_str_list(self._get("tags"), "tags")

    @property
    def timeout_minutes(self) -> int:
        return _require_int(self._get("timeout", DEFAULT_TIMEOUT_MINUTES), "timeout")

    @property
    def verbose(self) -> bool:
        return _require_bool(self._get("verbose", False), "verbose")

    @property
    def stderr(self) -> bool:
        return _require_bool(self._get("stderr", True), "stderr")

    @property
    def client_cmd(self) -> str:
        return str(self._get("client_cmd", DEFAULT_CLIENT_CMD))

    # =========================================================================
    # Derived values
    # =========================================================================

    def build_spec(self) -> JobSpec:
        """
        Build the job to submit.

        Raises:
            ConfigError: If any setting is missing or invalid
        """
        return JobSpec(
            appname=self.appname,
            command=self.command,
            env=self.env,
            cpu=self.cpu,
            mem_mb=self.mem_mb,
            disk_mb=self.disk_mb,
            gpu=self.gpu,
            ports=self.ports,
            priority=self.priority,
            name=self.name,
            tags=self.tags,
            timeout_minutes=self.timeout_minutes,
        )

    def env_vars(self) -> Dict[str, str]:
        """Config keys usable as process environment variables (string values only)."""
        env_vars = {}
        for key, value in self.raw.items():
            if not is_valid_env_key(key):
                logger.debug("Ignoring invalid env var key: %s", key)
                continue
            if not isinstance(value, str):
                logger.debug("Ignoring key with non-string value: %s", key)
                continue
            env_vars[key] = value
        return env_vars

    def summary(self) -> Dict[str, Any]:
        """Explicitly set options, for logging. Has no side effects."""
        keys = (
            "client_mode", "client_config", "appname", "env", "cpu", "mem", "disk", "gpu",
            "ports", "priority", "name", "tags", "timeout", "verbose", "stderr",
        )
        summary = {key: self.raw.get(key) for key in keys}
        # Only variable names, values may hold credentials
        if isinstance(summary["env"], (list, tuple)):
            summary["env"] = [str(pair).split("=", 1)[0] for pair in summary["env"]]
        return summary
