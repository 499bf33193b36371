"""
Configuration file loading.

A config file is YAML. Input options live either at the top level or under
an ``in`` section; an optional ``logging`` section configures log output.
"""

from pathlib import Path
from typing import Any

import yaml

from sftp_ingest.config.models import SftpInputConfig
from sftp_ingest.config.resolver import resolve_config
from sftp_ingest.exceptions import ConfigurationError


def load_raw_config(config_path: Path) -> dict[str, Any]:
    """
    Read and env-resolve a YAML config file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a YAML mapping
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration path is not a file: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            raise ConfigurationError(
                f"Error parsing {config_path.name} at line {mark.line + 1}, column {mark.column + 1}:\n  {e}"
            ) from e
        raise ConfigurationError(f"Error parsing {config_path.name}: {e}") from e
    except PermissionError as e:
        raise ConfigurationError(f"Permission denied reading configuration file: {config_path}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")
    return resolve_config(data)


def input_section(data: dict[str, Any]) -> dict[str, Any]:
    """Return the input options, whether nested under ``in`` or at top level."""
    section = data.get("in", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration 'in' must be a mapping, got {type(section).__name__}")
    return section


def load_config(config_path: Path, overrides: dict[str, Any] | None = None) -> SftpInputConfig:
    """
    Load an ``SftpInputConfig`` from a YAML file.

    Args:
        config_path: Path to the YAML file
        overrides: Values that replace file values (e.g. a ``last_path`` from a previous run)
    """
    section = dict(input_section(load_raw_config(config_path)))
    if overrides:
        section.update(overrides)
    return SftpInputConfig.from_dict(section)
