"""
Shared CLI helpers.
"""

import logging
from pathlib import Path

from sftp_ingest.config.loader import input_section, load_raw_config
from sftp_ingest.config.models import SftpInputConfig
from sftp_ingest.utils.logging import setup_logging_from_config


def load_cli_config(config_path: Path, *, last_path: str | None = None, verbose: bool = False) -> SftpInputConfig:
    """Load the config file, set up logging from it, and apply CLI overrides."""
    raw = load_raw_config(config_path)
    logger = setup_logging_from_config(raw, project_dir=config_path.parent)
    if verbose:
        logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            handler.setLevel(logging.DEBUG)

    section = dict(input_section(raw))
    if last_path is not None:
        section["last_path"] = last_path
    return SftpInputConfig.from_dict(section)
