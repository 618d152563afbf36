"""Dell Command | Monitor installation."""

from .dell_command_monitor import (
    InstallerError,
    InstallResult,
    InstallStatus,
    download_installer,
    ensure_installed,
    find_installed_version,
    needs_install,
    parse_version,
    run_installer,
)

__all__ = [
    "InstallerError",
    "InstallResult",
    "InstallStatus",
    "download_installer",
    "ensure_installed",
    "find_installed_version",
    "needs_install",
    "parse_version",
    "run_installer",
]
