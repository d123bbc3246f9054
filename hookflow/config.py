"""
Configuration management for hookflow.

Configuration is read from ``~/.hookflowrc`` (JSON), ``~/.hookflowrc.yaml``
or ``~/.hookflowrc.toml`` and merged over the defaults. Any value can be
overridden from the environment with ``HOOKFLOW_<SECTION>_<KEY>``.
"""
import copy
import json
import logging
import os
from pathlib import Path

import toml
import yaml
from rich.console import Console
from rich.logging import RichHandler

# Initialize Rich Console
console = Console()

logger = logging.getLogger("hookflow")

ENV_PREFIX = "HOOKFLOW_"

CONFIG_FILENAMES = [
    ".hookflowrc",
    ".hookflowrc.json",
    ".hookflowrc.yaml",
    ".hookflowrc.yml",
    ".hookflowrc.toml",
]


def get_default_config():
    """
    Returns the default configuration.

    Returns:
        dict: A fresh copy of the default configuration.
    """
    home = Path.home() / ".hookflow"
    return {
        "database": {
            "path": str(home / "hookflow.db"),
        },
        "workflows": {
            "directory": str(home / "workflows"),
        },
        "execution": {
            "kill_grace_period": 5.0,
            "max_backoff": 10000,
        },
        "logs": {
            "retention_days": 30,
            "statistics_days": 7,
        },
        "logging": {
            "level": "INFO",
            "format": "%(message)s",
        },
    }


def get_config_path():
    """Return the first existing config file in the home directory, or None."""
    home = Path.home()
    for name in CONFIG_FILENAMES:
        path = home / name
        if path.exists():
            return path
    return None


def _read_config_file(path):
    path = Path(path)
    text = path.read_text()
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    if path.suffix == ".toml":
        return toml.loads(text)
    return json.loads(text) if text.strip() else {}


def merge_configs(base, override):
    """
    Recursively merge ``override`` into a copy of ``base``.

    Args:
        base (dict): Base configuration.
        override (dict): Values taking precedence.

    Returns:
        dict: The merged configuration.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _coerce(value, template):
    if isinstance(template, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(template, int):
        return int(value)
    if isinstance(template, float):
        return float(value)
    return value


def _apply_node_override(node, parts, value):
    """Walk ``parts`` greedily through ``node`` so keys containing '_' still resolve."""
    for i in range(len(parts), 0, -1):
        key = "_".join(parts[:i]).lower()
        if key not in node:
            continue
        rest = parts[i:]
        if not rest:
            if not isinstance(node[key], dict):
                node[key] = _coerce(value, node[key])
                return True
            continue
        if isinstance(node[key], dict) and _apply_node_override(node[key], rest, value):
            return True
    return False


def apply_env_overrides(config, environ=None):
    """
    Apply ``HOOKFLOW_*`` environment variables to ``config`` in place.

    Only keys that already exist in the configuration are overridden.
    """
    environ = os.environ if environ is None else environ
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = name[len(ENV_PREFIX):].split("_")
        try:
            if not _apply_node_override(config, parts, value):
                logger.debug(f"Ignoring unknown config override {name}")
        except ValueError as e:
            logger.warning(f"Invalid value for {name}: {e}")
    return config


def load_config(path=None):
    """
    Load configuration from file and environment.

    Args:
        path (str, optional): Explicit config file. Defaults to the first
            ``~/.hookflowrc*`` file found.

    Returns:
        dict: The effective configuration.
    """
    config = get_default_config()
    config_path = Path(path) if path else get_config_path()
    if config_path and config_path.exists():
        try:
            config = merge_configs(config, _read_config_file(config_path))
        except (ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
            logger.error(f"Failed to read config file {config_path}: {e}")
    return apply_env_overrides(config)


def save_config(config, path=None):
    """
    Save configuration in the format implied by the file suffix.

    Args:
        config (dict): Configuration to save.
        path (str, optional): Target file. Defaults to ``~/.hookflowrc`` (JSON).
    """
    config_path = Path(path) if path else Path.home() / ".hookflowrc"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        if config_path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
        elif config_path.suffix == ".toml":
            toml.dump(config, f)
        else:
            json.dump(config, f, indent=2)
    return config_path


def set_config_value(key, value, path=None):
    """
    Set one dotted key (e.g. ``logs.retention_days``) in a config file.

    Only keys present in the default configuration are accepted; the value
    is converted to the type of the default. Other settings in the file are
    preserved.

    Args:
        key (str): Dotted key.
        value (str): New value as text.
        path (str, optional): Config file. Defaults to the existing
            ``~/.hookflowrc*`` file, or ``~/.hookflowrc``.

    Returns:
        Path: The file written.

    Raises:
        ValueError: If the key is not a known setting or the value
            cannot be converted.
    """
    parts = key.split(".")
    template = get_default_config()
    for part in parts:
        if not isinstance(template, dict) or part not in template:
            raise ValueError(f"Unknown setting '{key}'")
        template = template[part]
    if isinstance(template, dict):
        raise ValueError(f"'{key}' is a section, not a setting")

    config_path = Path(path) if path else (get_config_path() or Path.home() / ".hookflowrc")
    config = _read_config_file(config_path) if config_path.exists() else {}

    node = config
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = _coerce(value, template)

    return save_config(config, config_path)


def generate_config_example():
    """Write ``~/.hookflowrc.example`` containing the default configuration."""
    example_path = Path.home() / ".hookflowrc.example"
    with open(example_path, "w") as f:
        json.dump(get_default_config(), f, indent=2)
    console.print(f"An example configuration file has been saved to {example_path}")
    return example_path


def setup_logging(config=None, verbose=False):
    """
    Route log records through a RichHandler on the shared console.
    """
    config = config or get_default_config()
    level = "DEBUG" if verbose else config.get("logging", {}).get("level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=config.get("logging", {}).get("format", "%(message)s"),
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
