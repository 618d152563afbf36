"""Shared command-line helpers."""

from .common import LOG_LEVELS, add_common_cli_arguments, setup_logging

__all__ = ["LOG_LEVELS", "add_common_cli_arguments", "setup_logging"]
