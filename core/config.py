"""
Configuration file helpers.

Task and system settings are YAML; driver state files are JSON. Command
line overrides use dot notation and are deep-merged over the loaded task.
"""
import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Iterable, Union

import yaml

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def load_config(config_path: PathLike) -> Dict[str, Any]:
    """
    Read a YAML mapping.

    Args:
        config_path: YAML file

    Returns:
        The mapping, or an empty dict for an empty file

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document is not a mapping

    Example:
        >>> system = load_config('configs/defaults/system.yaml')
        >>> system['retz']['max_poll_interval']
        20
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        document = yaml.safe_load(f)

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(document).__name__}")

    logger.info("Loaded config from: %s", path)
    return document


def load_json(json_path: PathLike) -> Any:
    """Read a JSON document. Raises FileNotFoundError if it is missing."""
    path = Path(json_path)
    if not path.is_file():
        raise FileNotFoundError(f"JSON file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: Dict[str, Any], output_path: PathLike) -> None:
    """Write ``data`` as indented JSON, creating parent directories."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge ``override`` over ``base`` without touching either input.

    Nested mappings are merged key by key; any other value in ``override``
    replaces the one in ``base``.

    Example:
        >>> merge_configs({'retz': {'cpu': 1, 'mem': '1GB'}}, {'retz': {'cpu': 4}})
        {'retz': {'cpu': 4, 'mem': '1GB'}}
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_cli_overrides(items: Iterable[str]) -> Dict[str, Any]:
    """
    Turn ``key=value`` command line items into a nested mapping.

    Keys use dot notation for nesting. Values are parsed as YAML, so
    ``cpu=4`` gives an int and ``verbose=true`` a bool. Only the first
    ``=`` separates key and value.

    Raises:
        ValueError: If an item has no ``=`` or an empty key

    Example:
        >>> parse_cli_overrides(['retz.cpu=4', 'tags=[nightly]'])
        {'retz': {'cpu': 4}, 'tags': ['nightly']}
    """
    overrides: Dict[str, Any] = {}
    for item in items:
        key, sep, raw = item.partition('=')
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Override must be key=value: {item!r}")

        *parents, leaf = key.split('.')
        node = overrides
        for part in parents:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ValueError(f"Override {item!r} conflicts with a value set earlier")
        node[leaf] = yaml.safe_load(raw) if raw.strip() else ''
    return overrides
