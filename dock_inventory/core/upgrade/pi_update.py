"""
Unattended Raspberry Pi OS upgrade to Bookworm.

Brings a Pi running Buster or Bullseye up to Bookworm without prompts: time
sync (certificates fail on Pis with a drifted clock), apt source repair for
Buster, Debian archive keys, the Buster→Bullseye and Bullseye→Bookworm
switches, firmware and a final reboot.

Each step is a method on PiUpgrade and every external command goes through a
CommandRunner, so the whole sequence can be dry-run or driven by a fake
runner in tests.
"""

from __future__ import annotations

import os
import subprocess
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

import psutil

from dock_inventory.core.config_manager import ConfigManager
from dock_inventory.core.logging_utils import get_module_logger
from dock_inventory.core.settings import DockInventorySettings

logger = get_module_logger("PiUpgrade")

NONINTERACTIVE_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "NEEDRESTART_MODE": "a",
    "NEEDRESTART_SUSPEND": "1",
}

DEBCONF_SELECTIONS = (
    "libssl1.1:amd64 libraries/restart-without-asking boolean true",
    "libc6:amd64 libraries/restart-without-asking boolean true",
    "libpam0g:amd64 libraries/restart-without-asking boolean true",
)

NTP_SERVERS = ("pool.ntp.org", "time.google.com", "time.cloudflare.com")

DEBIAN_KEY_URLS = tuple(
    f"https://ftp-master.debian.org/keys/archive-key-{release}{suffix}.asc"
    for release in (10, 11, 12)
    for suffix in ("", "-security")
)

BUSTER_SOURCES = (
    "deb http://deb.debian.org/debian buster main contrib non-free\n"
    "deb http://deb.debian.org/debian-security buster/updates main contrib non-free\n"
    "deb http://deb.debian.org/debian buster-updates main contrib non-free\n"
)
BUSTER_RASPI_SOURCES = "deb http://archive.raspberrypi.org/debian/ buster main\n"

DPKG_OPTIONS = ("-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold")

SUPPORTED_CODENAMES = ("buster", "bullseye", "bookworm")
FIRMWARE_PACKAGES = ("raspberrypi-bootloader", "raspberrypi-kernel")

KEY_FETCH_TIMEOUT = 30


class CommandError(Exception):
    """A required command exited non-zero."""

    def __init__(self, cmd: Sequence[str], returncode: int, output: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command {' '.join(self.cmd)!r} failed with exit code {returncode}")


class UpgradeError(Exception):
    """The upgrade cannot proceed on this system."""


class CommandRunner:
    """Runs system commands with optional sudo, a fixed environment and dry-run.

    Args:
        use_sudo: Prefix ``sudo`` when not already root.
        dry_run: Log commands instead of running them; they all succeed.
        env: Extra environment variables, preserved across sudo.
        timeout: Per-command timeout in seconds (None waits forever).
    """

    def __init__(
        self,
        *,
        use_sudo: bool = True,
        dry_run: bool = False,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        self.dry_run = dry_run
        self._env = dict(env or {})
        self._timeout = timeout
        self._sudo = use_sudo and hasattr(os, "geteuid") and os.geteuid() != 0

    def _command(self, args: Sequence[str]) -> list[str]:
        if not self._sudo:
            return list(args)
        prefix = ["sudo"]
        if self._env:
            prefix.append(f"--preserve-env={','.join(sorted(self._env))}")
        return prefix + list(args)

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input: Optional[str | bytes] = None,
    ) -> subprocess.CompletedProcess:
        """Run ``args`` and return the completed process (stdout holds stderr too).

        Raises:
            CommandError: ``check`` is set and the command failed or is missing.
        """
        command = self._command(args)
        if self.dry_run:
            logger.info("[dry-run] %s", " ".join(command))
            return subprocess.CompletedProcess(command, 0, "", None)

        logger.debug("Running %s", " ".join(command))
        data = input.encode("utf-8") if isinstance(input, str) else input
        try:
            result = subprocess.run(
                command,
                input=data,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env={**os.environ, **self._env},
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            result = subprocess.CompletedProcess(command, 127, str(e).encode("utf-8"), None)
        except subprocess.TimeoutExpired as e:
            result = subprocess.CompletedProcess(command, 124, e.output or b"", None)

        output = (result.stdout or b"").decode("utf-8", errors="replace")
        for line in output.splitlines():
            if line.strip():
                logger.debug("  %s", line)
        completed = subprocess.CompletedProcess(command, result.returncode, output, None)

        if check and completed.returncode != 0:
            raise CommandError(command, completed.returncode, output)
        return completed

    def try_run(self, args: Sequence[str], *, input: Optional[str | bytes] = None) -> bool:
        """Run a command whose failure is tolerated; True when it succeeded."""
        return self.run(args, check=False, input=input).returncode == 0


def read_os_release(path: Path) -> dict[str, str]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return ConfigManager.parse_lines(fh)
    except OSError as e:
        raise UpgradeError(f"Cannot read {path}: {e}") from e


def fetch_key(url: str, timeout: float = KEY_FETCH_TIMEOUT) -> bytes:
    request = urllib.request.Request(url, headers={"User-Agent": "dock-inventory-pi-update"})
    with urllib.request.urlopen(request, timeout=timeout) as response:
        return response.read()


@dataclass
class UpgradeReport:
    initial_codename: str = ""
    final_codename: str = ""
    time_synced: bool = False
    keys_imported: int = 0
    boot_size_mb: Optional[int] = None
    firmware_updated: bool = False
    reboot_requested: bool = False


class PiUpgrade:
    """Runs the upgrade steps in order; required commands abort on failure."""

    def __init__(
        self,
        runner: CommandRunner,
        settings: Optional[DockInventorySettings] = None,
        *,
        reboot: bool = True,
        os_release_path: Path = Path("/etc/os-release"),
        apt_dir: Path = Path("/etc/apt"),
        boot_path: str = "/boot",
        key_fetcher: Callable[[str], bytes] = fetch_key,
    ):
        self.runner = runner
        self.settings = settings or DockInventorySettings()
        self.reboot = reboot
        self.os_release_path = os_release_path
        self.sources_list = apt_dir / "sources.list"
        self.raspi_list = apt_dir / "sources.list.d" / "raspi.list"
        self.boot_path = boot_path
        self._fetch_key = key_fetcher
        self.report = UpgradeReport()

    def run(self) -> UpgradeReport:
        logger.info("=== Starting Raspberry Pi full system update ===")
        self._log_os_release("Current OS version")
        self.configure_noninteractive()
        self.sync_time()

        codename = self.detect_codename()
        self.report.initial_codename = codename
        if codename == "buster":
            self.fix_buster_sources()
        self.import_keys()
        self.upgrade_current()
        if codename == "buster":
            codename = self.switch_release("buster", "bullseye")
            self.apt_update()
            self.apt_upgrade_minimal()
            self.apt_dist_upgrade()
            logger.info("Buster to Bullseye upgrade complete")

        boot_ok = self.check_boot_partition()
        self.update_firmware(boot_ok)

        if codename != "bookworm":
            codename = self.switch_release(codename, "bookworm")
        self.apt_update()
        self.apt_upgrade_minimal()
        self.apt_dist_upgrade()
        self.clean_up()
        self.reinstall_firmware_packages()
        self.report.final_codename = codename

        logger.info("=== Update complete ===")
        self._log_os_release("New OS version")
        self.request_reboot()
        return self.report

    # ------------------------------------------------------------------
    # Steps

    def configure_noninteractive(self) -> None:
        logger.info("Configuring automatic service restarts")
        for selection in DEBCONF_SELECTIONS:
            self.runner.run(["debconf-set-selections"], input=selection + "\n")

    def sync_time(self) -> bool:
        logger.info("Synchronizing system time")
        for server in NTP_SERVERS:
            if self.runner.try_run(["ntpdate", "-u", server]):
                logger.info("Time synced with %s", server)
                self.report.time_synced = True
                return True

        if self.runner.try_run(["timedatectl", "set-ntp", "true"]):
            if not self.runner.dry_run:
                time.sleep(3)
            logger.info("Time sync enabled via systemd")
            self.report.time_synced = True
            return True

        logger.warning(
            "Could not sync time automatically, continuing with system time; "
            "set it with `sudo date -s 'YYYY-MM-DD HH:MM:SS'` if certificate errors occur"
        )
        return False

    def detect_codename(self) -> str:
        codename = read_os_release(self.os_release_path).get("VERSION_CODENAME", "").strip().lower()
        logger.info("Detected Debian release: %s", codename or "unknown")
        if codename not in SUPPORTED_CODENAMES:
            raise UpgradeError(
                f"Unsupported release {codename or 'unknown'!r}; expected one of {', '.join(SUPPORTED_CODENAMES)}"
            )
        return codename

    def fix_buster_sources(self) -> None:
        # raspbian.raspberrypi.org no longer serves buster
        logger.info("Pointing Buster sources at deb.debian.org")
        self._write_root_file(self.sources_list, BUSTER_SOURCES)
        self._write_root_file(self.raspi_list, BUSTER_RASPI_SOURCES)

    def import_keys(self) -> int:
        logger.info("Importing Debian archive keys")
        imported = 0
        for url in DEBIAN_KEY_URLS:
            name = url.rsplit("/", 1)[-1]
            try:
                key = b"" if self.runner.dry_run else self._fetch_key(url)
            except (urllib.error.URLError, OSError) as e:
                logger.warning("Fetching %s failed: %s", name, e)
                continue
            if self.runner.try_run(["apt-key", "add", "-"], input=key):
                imported += 1
            else:
                logger.info("Key %s failed to import or was not needed", name)
        self.report.keys_imported = imported
        return imported

    def upgrade_current(self) -> None:
        logger.info("Updating packages of the current release")
        self.apt_update()
        self.runner.run(["apt-get", "upgrade", "-y", "--fix-missing", *DPKG_OPTIONS])
        self.apt_dist_upgrade()

    def switch_release(self, current: str, target: str) -> str:
        logger.info("Switching apt sources from %s to %s", current, target)
        self.runner.run(["cp", str(self.sources_list), f"{self.sources_list}.{current}-backup"])
        if self.raspi_list.exists():
            self.runner.run(["cp", str(self.raspi_list), f"{self.raspi_list}.{current}-backup"])

        self.runner.run(["sed", "-i", f"s/{current}/{target}/g", str(self.sources_list)])
        if self.raspi_list.exists():
            self.runner.run(["sed", "-i", f"s/{current}/{target}/g", str(self.raspi_list)])
        return target

    def check_boot_partition(self) -> bool:
        """True when /boot can hold current firmware; tries to expand it when not."""
        minimum = self.settings.pi_min_boot_mb
        try:
            size_mb = psutil.disk_usage(self.boot_path).total // (1024 * 1024)
        except OSError as e:
            logger.warning("Cannot determine size of %s: %s", self.boot_path, e)
            return False
        self.report.boot_size_mb = size_mb
        logger.info("Boot partition size: %dM", size_mb)
        if size_mb >= minimum:
            return True

        logger.warning("Boot partition is smaller than %dM, attempting to expand", minimum)
        if not self.runner.try_run(["raspi-config", "--expand-rootfs"]):
            logger.warning("Automatic expansion failed")
        logger.warning(
            "Boot partition resize may need manual intervention: run "
            "`sudo raspi-config` -> Advanced -> Expand Filesystem, reboot and run pi-update again"
        )
        return False

    def update_firmware(self, boot_ok: bool) -> bool:
        if not boot_ok:
            logger.info("Skipping rpi-update; firmware will come from apt packages instead")
            return False
        logger.info("Updating Raspberry Pi firmware")
        updated = self.runner.try_run(["rpi-update"], input="y\n")
        if not updated:
            logger.info("rpi-update not available, skipping")
        self.report.firmware_updated = updated
        return updated

    def clean_up(self) -> None:
        logger.info("Cleaning up old packages")
        self.runner.run(["apt-get", "autoremove", "-y"])
        self.runner.run(["apt-get", "autoclean", "-y"])

    def reinstall_firmware_packages(self) -> None:
        logger.info("Reinstalling firmware packages")
        if not self.runner.try_run(
            ["apt-get", "install", "--reinstall", *FIRMWARE_PACKAGES, "-y", *DPKG_OPTIONS]
        ):
            logger.info("Firmware packages not available")

    def request_reboot(self) -> None:
        self.report.reboot_requested = self.reboot
        if not self.reboot:
            logger.warning("REBOOT REQUIRED: run `sudo reboot`, then verify with `cat /etc/os-release`")
            return
        logger.info("Rebooting")
        self.runner.run(["reboot"])

    # ------------------------------------------------------------------
    # apt helpers

    def apt_update(self) -> None:
        self.runner.run(["apt-get", "update"])

    def apt_upgrade_minimal(self) -> None:
        self.runner.run(["apt-get", "upgrade", "-y", "--without-new-pkgs", *DPKG_OPTIONS])

    def apt_dist_upgrade(self) -> None:
        self.runner.run(["apt-get", "dist-upgrade", "-y", *DPKG_OPTIONS])

    def _write_root_file(self, path: Path, content: str) -> None:
        self.runner.run(["tee", str(path)], input=content)

    def _log_os_release(self, title: str) -> None:
        try:
            release = read_os_release(self.os_release_path)
        except UpgradeError as e:
            logger.warning("%s", e)
            return
        logger.info("%s: %s", title, release.get("PRETTY_NAME", "unknown"))


def build_runner(settings: DockInventorySettings, *, dry_run: bool = False) -> CommandRunner:
    return CommandRunner(use_sudo=settings.pi_use_sudo, dry_run=dry_run, env=NONINTERACTIVE_ENV)


__all__ = [
    "CommandError",
    "CommandRunner",
    "PiUpgrade",
    "UpgradeError",
    "UpgradeReport",
    "build_runner",
    "read_os_release",
]
