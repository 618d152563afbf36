"""Tests for the Dell Command | Monitor installer wrapper."""

import hashlib
import io
import subprocess
import urllib.error
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from dock_inventory.core.installer import (
    InstallerError,
    InstallStatus,
    download_installer,
    ensure_installed,
    find_installed_version,
    needs_install,
    parse_version,
    run_installer,
)
from dock_inventory.core.installer import dell_command_monitor as dcm
from dock_inventory.core.settings import DockInventorySettings

MODULE = "dock_inventory.core.installer.dell_command_monitor"
UNINSTALL = r"HKEY_LOCAL_MACHINE\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
PAYLOAD = b"MZ fake installer payload"


@pytest.fixture
def registry(monkeypatch, fake_winreg):
    monkeypatch.setattr(dcm, "winreg", fake_winreg)
    monkeypatch.setattr(dcm, "WINREG_AVAILABLE", True)
    fake_winreg.add_key(UNINSTALL)
    return fake_winreg


@pytest.fixture
def plenty_of_space():
    with patch(f"{MODULE}.psutil.disk_usage", return_value=SimpleNamespace(free=10 * 1024 ** 3)) as usage:
        yield usage


class TestVersions:

    def test_parse_version(self):
        assert parse_version("10.10.0.151") == (10, 10, 0, 151)
        assert parse_version("v10.2") == (10, 2, 0)
        assert parse_version("garbage") == (0, 0, 0)

    @pytest.mark.parametrize("installed,minimum,expected", [
        (None, "10.0.0", True),
        ("9.3.0", "10.0.0", True),
        ("10.0.0", "10.0.0", False),
        ("10.10.0.151", "10.0.0", False),
    ])
    def test_needs_install(self, installed, minimum, expected):
        assert needs_install(installed, minimum) is expected


class TestFindInstalledVersion:

    def test_found(self, registry):
        registry.add_key(UNINSTALL + r"\{AAA}", DisplayName="Microsoft Edge", DisplayVersion="120.0")
        registry.add_key(UNINSTALL + r"\{BBB}", DisplayName="Dell Command | Monitor", DisplayVersion="10.10.0.151")

        assert find_installed_version() == "10.10.0.151"

    def test_not_installed(self, registry):
        registry.add_key(UNINSTALL + r"\{AAA}", DisplayName="Microsoft Edge", DisplayVersion="120.0")
        registry.add_key(UNINSTALL + r"\{CCC}", SystemComponent=1)

        assert find_installed_version() is None

    def test_no_registry(self, monkeypatch):
        monkeypatch.setattr(dcm, "WINREG_AVAILABLE", False)

        assert find_installed_version() is None


class TestDownloadInstaller:

    def test_download_and_verify(self, tmp_path, plenty_of_space):
        digest = hashlib.sha256(PAYLOAD).hexdigest()
        with patch(f"{MODULE}.urllib.request.urlopen", return_value=io.BytesIO(PAYLOAD)) as urlopen:
            path = download_installer("https://dl.example.com/dir/DCM_10.exe", tmp_path, sha256=digest.upper())

        assert path == tmp_path / "DCM_10.exe"
        assert path.read_bytes() == PAYLOAD
        request = urlopen.call_args[0][0]
        assert request.get_header("User-agent") == "dock-inventory-installer"

    def test_hash_mismatch_removes_file(self, tmp_path, plenty_of_space):
        with patch(f"{MODULE}.urllib.request.urlopen", return_value=io.BytesIO(PAYLOAD)):
            with pytest.raises(InstallerError, match="SHA-256 mismatch"):
                download_installer("https://dl.example.com/DCM.exe", tmp_path, sha256="00" * 32)

        assert list(tmp_path.iterdir()) == []

    def test_network_error(self, tmp_path, plenty_of_space):
        with patch(f"{MODULE}.urllib.request.urlopen", side_effect=urllib.error.URLError("offline")):
            with pytest.raises(InstallerError, match="offline"):
                download_installer("https://dl.example.com/DCM.exe", tmp_path)

    def test_low_disk_space(self, tmp_path):
        with patch(f"{MODULE}.psutil.disk_usage", return_value=SimpleNamespace(free=50 * 1024 ** 2)):
            with pytest.raises(InstallerError, match="MB free"):
                download_installer("https://dl.example.com/DCM.exe", tmp_path)


class TestRunInstaller:

    def test_silent_arguments(self, tmp_path):
        installer = tmp_path / "DCM.exe"
        completed = subprocess.CompletedProcess([], 3010, "", "")
        with patch(f"{MODULE}.subprocess.run", return_value=completed) as run:
            code = run_installer(installer, log_path=tmp_path / "dcm.log")

        assert code == 3010
        assert run.call_args[0][0] == [str(installer), "/s", f"/l={tmp_path / 'dcm.log'}"]

    def test_missing_installer(self, tmp_path):
        with patch(f"{MODULE}.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(InstallerError):
                run_installer(tmp_path / "absent.exe")


class TestEnsureInstalled:

    @pytest.fixture
    def settings(self):
        return DockInventorySettings(
            dcm_installer_url="https://dl.example.com/DCM.exe",
            dcm_installer_sha256="abc",
            dcm_min_version="10.0.0",
        )

    def _patch(self, monkeypatch, versions, exit_code=0, download_error=None):
        monkeypatch.setattr(dcm, "find_installed_version", MagicMock(side_effect=list(versions)))
        download = MagicMock(return_value=dcm.Path("DCM.exe"), side_effect=download_error)
        run = MagicMock(return_value=exit_code)
        monkeypatch.setattr(dcm, "download_installer", download)
        monkeypatch.setattr(dcm, "run_installer", run)
        return download, run

    def test_already_installed(self, monkeypatch, settings, tmp_path):
        download, run = self._patch(monkeypatch, ["10.10.0.151"])

        result = ensure_installed(settings, download_dir=tmp_path)

        assert result.status is InstallStatus.ALREADY_INSTALLED
        assert result.version == "10.10.0.151"
        download.assert_not_called()
        run.assert_not_called()

    def test_installs_when_missing(self, monkeypatch, settings, tmp_path):
        download, run = self._patch(monkeypatch, [None, "10.10.0.151"])

        result = ensure_installed(settings, download_dir=tmp_path)

        assert result.status is InstallStatus.INSTALLED
        assert result.version == "10.10.0.151"
        download.assert_called_once_with(settings.dcm_installer_url, tmp_path, sha256="abc")

    @pytest.mark.parametrize("exit_code", [2, 3010])
    def test_reboot_required(self, monkeypatch, settings, tmp_path, exit_code):
        self._patch(monkeypatch, ["9.0.0", "10.10.0.151"], exit_code=exit_code)

        result = ensure_installed(settings, download_dir=tmp_path)

        assert result.status is InstallStatus.REBOOT_REQUIRED
        assert result.succeeded

    def test_force_reinstalls(self, monkeypatch, settings, tmp_path):
        download, _ = self._patch(monkeypatch, ["10.10.0.151", "10.10.0.151"])

        result = ensure_installed(settings, download_dir=tmp_path, force=True)

        assert result.status is InstallStatus.INSTALLED
        download.assert_called_once()

    def test_installer_failure(self, monkeypatch, settings, tmp_path):
        self._patch(monkeypatch, [None], exit_code=1603)

        result = ensure_installed(settings, download_dir=tmp_path)

        assert result.status is InstallStatus.FAILED
        assert "1603" in result.message
        assert not result.succeeded

    def test_download_failure(self, monkeypatch, settings, tmp_path):
        _, run = self._patch(monkeypatch, [None], download_error=InstallerError("offline"))

        result = ensure_installed(settings, download_dir=tmp_path)

        assert result.status is InstallStatus.FAILED
        assert result.message == "offline"
        run.assert_not_called()
