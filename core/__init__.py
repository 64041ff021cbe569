"""Core configuration and utility modules."""

from .config import load_config, load_json, save_json, merge_configs, parse_cli_overrides
from .logger import setup_logger, create_task_logger, log_config

__all__ = [
    'load_config',
    'load_json',
    'save_json',
    'merge_configs',
    'parse_cli_overrides',
    'setup_logger',
    'create_task_logger',
    'log_config'
]
