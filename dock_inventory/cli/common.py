from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from dock_inventory.core.logging_config import configure_logging


LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def add_common_cli_arguments(parser: argparse.ArgumentParser) -> None:
    """Options every subcommand accepts.

    Defaults are None so that values from the config file apply unless the
    option is given explicitly.
    """
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: config.txt next to the package)",
    )

    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (default: log_level from config, else info)",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write logs to (rotated)",
    )


def setup_logging(
    args: argparse.Namespace,
    default_level: str = "info",
    *,
    default_log_file: Optional[Path] = None,
) -> None:
    level = args.log_level or default_level
    if level not in LOG_LEVELS:
        level = "info"
    configure_logging(LOG_LEVELS[level], log_file=args.log_file or default_log_file)
