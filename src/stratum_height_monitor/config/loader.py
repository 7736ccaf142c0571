"""Reading, validating and summarizing YAML configuration files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Union

import yaml
from pydantic import ValidationError

from stratum_height_monitor.config.models import Config


class ConfigError(Exception):
    """Configuration error."""

    pass


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    if not path.is_file():
        raise ConfigError(f"Configuration path is not a file: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file: {e}") from e

    if raw is None:
        raise ConfigError("Configuration file is empty")
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Configuration file must contain a YAML mapping (dict), got {type(raw).__name__}"
        )
    return raw


def _error_location(loc: tuple, raw: dict) -> str:
    """
    Render a pydantic error location, naming endpoints instead of indexing them.

    ``("endpoints", 1, "port")`` becomes ``endpoints[bch-pool].port`` when the
    second endpoint has a usable name.
    """
    parts: List[str] = []
    items = list(loc)
    if len(items) >= 2 and items[0] == "endpoints" and isinstance(items[1], int):
        label: Any = items[1]
        endpoints = raw.get("endpoints")
        if isinstance(endpoints, list) and items[1] < len(endpoints):
            entry = endpoints[items[1]]
            if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]:
                label = entry["name"]
        parts.append(f"endpoints[{label}]")
        items = items[2:]
    parts.extend(str(x) for x in items)
    return ".".join(parts) or "config"


def load_config(path: Union[str, Path]) -> Config:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or the configuration is invalid.
    """
    raw = _read_yaml(Path(path))
    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        lines = [f"  - {_error_location(err['loc'], raw)}: {err['msg']}" for err in e.errors()]
        raise ConfigError("Configuration validation failed:\n" + "\n".join(lines)) from e


def enabled_senders(config: Config) -> List[str]:
    """Names of the delivery backends the configuration turns on, in dispatch order."""
    enabled = []
    if config.senders.slack.webhook_url:
        enabled.append("slack")
    if config.senders.database.path:
        enabled.append("database")
    return enabled


def validate_config(path: Union[str, Path]) -> tuple[bool, str]:
    """
    Validate a configuration file.

    Args:
        path: Path to the configuration file.

    Returns:
        Tuple of (is_valid, message).
    """
    try:
        config = load_config(path)
    except ConfigError as e:
        return False, str(e)

    return (
        True,
        f"Configuration valid: {len(config.endpoints)} endpoints, "
        f"{len(enabled_senders(config))} enabled senders",
    )
