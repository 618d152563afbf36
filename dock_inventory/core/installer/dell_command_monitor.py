"""
Dell Command | Monitor installer wrapper.

Dell Command | Monitor provides the ``root/dcim/sysman`` namespace that the
highest-priority dock detection method reads. This module checks the
installed version, downloads the Dell Update Package when it is missing or
too old and runs it silently.
"""

from __future__ import annotations

import hashlib
import subprocess
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import psutil

from dock_inventory.core.logging_utils import get_module_logger
from dock_inventory.core.paths import DOWNLOADS_DIR
from dock_inventory.core.settings import DockInventorySettings

logger = get_module_logger("DcmInstaller")

if sys.platform == "win32":
    import winreg
    WINREG_AVAILABLE = True
else:
    winreg = None
    WINREG_AVAILABLE = False

PRODUCT_NAME = "Dell Command | Monitor"

UNINSTALL_KEYS = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
)

USER_AGENT = "dock-inventory-installer"
DOWNLOAD_TIMEOUT = 60
INSTALL_TIMEOUT = 1800
_CHUNK_SIZE = 64 * 1024

# Dell Update Package exit codes; 3010 comes from the wrapped MSI
EXIT_SUCCESS = 0
EXIT_REBOOT_REQUIRED = (2, 3010)


class InstallerError(Exception):
    """Download, verification or installation failed."""


class InstallStatus(Enum):
    ALREADY_INSTALLED = "already-installed"
    INSTALLED = "installed"
    REBOOT_REQUIRED = "reboot-required"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallResult:
    status: InstallStatus
    version: Optional[str] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not InstallStatus.FAILED


def parse_version(version_str: str) -> tuple:
    """Parse ``10.10.0.151`` (or ``v10.10``) into a comparable tuple.

    Unparseable versions compare lowest.
    """
    version = (version_str or "").strip().lstrip("vV")
    try:
        parts = tuple(int(p) for p in version.split("."))
    except ValueError:
        return (0, 0, 0)
    while len(parts) < 3:
        parts = parts + (0,)
    return parts


def needs_install(installed: Optional[str], minimum: str) -> bool:
    """True when nothing is installed or the installed version is below ``minimum``."""
    if not installed:
        return True
    return parse_version(installed) < parse_version(minimum)


def find_installed_version() -> Optional[str]:
    """Return the installed Dell Command | Monitor version from the uninstall keys."""
    if not WINREG_AVAILABLE:
        logger.debug("Registry not available; treating %s as not installed", PRODUCT_NAME)
        return None

    for uninstall_key in UNINSTALL_KEYS:
        try:
            root = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, uninstall_key)
        except OSError:
            continue
        with root:
            index = 0
            while True:
                try:
                    subkey_name = winreg.EnumKey(root, index)
                except OSError:
                    break
                index += 1
                try:
                    with winreg.OpenKey(root, subkey_name) as subkey:
                        display_name, _ = winreg.QueryValueEx(subkey, "DisplayName")
                        if not str(display_name).startswith(PRODUCT_NAME):
                            continue
                        version, _ = winreg.QueryValueEx(subkey, "DisplayVersion")
                except OSError:
                    continue
                logger.debug("Found %s %s under %s", PRODUCT_NAME, version, uninstall_key)
                return str(version)
    return None


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def download_installer(
    url: str,
    destination_dir: Path,
    *,
    sha256: Optional[str] = None,
    min_free_mb: int = 200,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """Download the installer into ``destination_dir`` and return its path.

    Raises:
        InstallerError: not enough disk space, the download failed, or the
            SHA-256 does not match ``sha256``.
    """
    destination_dir.mkdir(parents=True, exist_ok=True)
    free_mb = psutil.disk_usage(str(destination_dir)).free // (1024 * 1024)
    if free_mb < min_free_mb:
        raise InstallerError(f"Only {free_mb} MB free in {destination_dir}, need {min_free_mb} MB")

    file_name = Path(urlparse(url).path).name or "dcm-installer.exe"
    target = destination_dir / file_name
    partial = target.with_name(target.name + ".part")

    logger.info("Downloading %s", url)
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response, open(partial, "wb") as out:
            for chunk in iter(lambda: response.read(_CHUNK_SIZE), b""):
                out.write(chunk)
    except (urllib.error.URLError, OSError) as e:
        partial.unlink(missing_ok=True)
        raise InstallerError(f"Download of {url} failed: {e}") from e

    if sha256:
        actual = _sha256(partial)
        if actual.lower() != sha256.lower():
            partial.unlink(missing_ok=True)
            raise InstallerError(f"SHA-256 mismatch for {file_name}: expected {sha256}, got {actual}")
        logger.debug("SHA-256 verified for %s", file_name)

    partial.replace(target)
    logger.info("Saved installer to %s", target)
    return target


def run_installer(installer: Path, log_path: Optional[Path] = None, timeout: float = INSTALL_TIMEOUT) -> int:
    """Run the Dell Update Package silently and return its exit code."""
    args = [str(installer), "/s"]
    if log_path is not None:
        args.append(f"/l={log_path}")

    logger.info("Running %s silently", installer.name)
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise InstallerError(f"Installer not found: {installer}") from e
    except subprocess.TimeoutExpired as e:
        raise InstallerError(f"Installer did not finish within {timeout:.0f}s") from e
    except OSError as e:
        raise InstallerError(f"Cannot start installer {installer}: {e}") from e

    logger.debug("Installer exited with %d", result.returncode)
    return result.returncode


def ensure_installed(
    settings: DockInventorySettings,
    *,
    download_dir: Path = DOWNLOADS_DIR,
    force: bool = False,
    log_path: Optional[Path] = None,
) -> InstallResult:
    """Install Dell Command | Monitor unless an adequate version is present.

    Download and installer failures come back as a FAILED result rather than
    an exception, so callers only need to map the status to an exit code.
    """
    min_version = settings.dcm_min_version
    installed = find_installed_version()
    if not force and not needs_install(installed, min_version):
        logger.info("%s %s already installed (minimum %s)", PRODUCT_NAME, installed, min_version)
        return InstallResult(InstallStatus.ALREADY_INSTALLED, installed, "already installed")

    if installed:
        logger.info("%s %s is below %s, upgrading", PRODUCT_NAME, installed, min_version)

    try:
        installer = download_installer(
            settings.dcm_installer_url,
            download_dir,
            sha256=settings.dcm_installer_sha256 or None,
        )
        exit_code = run_installer(installer, log_path=log_path)
    except InstallerError as e:
        logger.error("Installation failed: %s", e)
        return InstallResult(InstallStatus.FAILED, installed, str(e))

    if exit_code == EXIT_SUCCESS:
        status = InstallStatus.INSTALLED
    elif exit_code in EXIT_REBOOT_REQUIRED:
        status = InstallStatus.REBOOT_REQUIRED
    else:
        logger.error("Installer exited with %d", exit_code)
        return InstallResult(InstallStatus.FAILED, installed, f"installer exit code {exit_code}")

    version = find_installed_version() or installed
    logger.info("%s install finished: %s", PRODUCT_NAME, status.value)
    return InstallResult(status, version, f"installer exit code {exit_code}")


__all__ = [
    "InstallResult",
    "InstallStatus",
    "InstallerError",
    "download_installer",
    "ensure_installed",
    "find_installed_version",
    "needs_install",
    "parse_version",
    "run_installer",
]
