"""
Configuration models and YAML loading.
"""

from sftp_ingest.config.loader import input_section, load_config, load_raw_config
from sftp_ingest.config.models import (
    ConnectionConfig,
    CursorUnmatched,
    ProxyConfig,
    ProxyType,
    SftpInputConfig,
)

__all__ = [
    "ConnectionConfig",
    "CursorUnmatched",
    "ProxyConfig",
    "ProxyType",
    "SftpInputConfig",
    "input_section",
    "load_config",
    "load_raw_config",
]
