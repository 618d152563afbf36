"""Raspberry Pi OS upgrade sequence."""

from .pi_update import (
    CommandError,
    CommandRunner,
    PiUpgrade,
    UpgradeError,
    UpgradeReport,
    build_runner,
    read_os_release,
)

__all__ = [
    "CommandError",
    "CommandRunner",
    "PiUpgrade",
    "UpgradeError",
    "UpgradeReport",
    "build_runner",
    "read_os_release",
]
