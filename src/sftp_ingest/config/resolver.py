"""
Environment variable substitution for configuration values.
"""

import os
import re
from typing import Any

_ENV_PATTERN = re.compile(r"\${([^}]+)}")


def resolve_config(config_data: dict[str, Any]) -> dict[str, Any]:
    """
    Substitute ``${VAR_NAME}`` placeholders with environment values.

    Unset variables are left as-is so the error surfaces where the value is used.
    """
    return _resolve_value(config_data)


def _resolve_value(value: Any) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_value(item) for item in value]
    elif isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(0)), value)
    else:
        return value
