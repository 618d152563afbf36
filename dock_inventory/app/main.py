import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from dock_inventory.cli.common import add_common_cli_arguments, setup_logging
from dock_inventory.core.devices import (
    DeviceResolver,
    StoreError,
    build_default_strategies,
    build_model_filter,
    create_store,
    render,
)
from dock_inventory.core.installer import InstallStatus, ensure_installed
from dock_inventory.core.logging_utils import get_module_logger
from dock_inventory.core.paths import DOWNLOADS_DIR, LOGS_DIR, ensure_directories
from dock_inventory.core.settings import (
    OUTPUT_FORMATS,
    STORE_KINDS,
    DockInventorySettings,
    load_settings,
)
from dock_inventory.core.upgrade import CommandError, PiUpgrade, UpgradeError, build_runner


logger = get_module_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_DOCK = 1
EXIT_REBOOT_REQUIRED = 3010


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; unset options fall back to the config file."""
    common = argparse.ArgumentParser(add_help=False)
    add_common_cli_arguments(common)

    parser = argparse.ArgumentParser(
        prog="dock-inventory",
        description="Dell dock inventory for Intune, plus Dell Command | Monitor and Pi OS maintenance",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    detect = subparsers.add_parser(
        "detect",
        parents=[common],
        help="Detect attached docks (exit 0 when found, 1 when none)",
    )
    detect.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Output format (default: output_format from config, else json)",
    )
    detect.add_argument(
        "--store",
        choices=STORE_KINDS,
        default=None,
        help="Where to persist results (default: registry on Windows, file elsewhere)",
    )
    detect.add_argument(
        "--state-file",
        type=lambda value: Path(value).expanduser(),
        default=None,
        help="State file used by --store file",
    )
    detect.add_argument(
        "--no-model-filter",
        dest="model_filter_enabled",
        action="store_false",
        default=None,
        help="Report every Dell device the detection methods return",
    )
    detect.add_argument(
        "--show-attempts",
        action="store_true",
        default=False,
        help="Include per-method outcomes in JSON output",
    )

    install = subparsers.add_parser(
        "install-dcm",
        parents=[common],
        help="Install Dell Command | Monitor (exit 0, 3010 when a reboot is required, 1 on failure)",
    )
    install.add_argument("--url", dest="dcm_installer_url", default=None, help="Installer download URL")
    install.add_argument("--sha256", dest="dcm_installer_sha256", default=None, help="Expected installer SHA-256")
    install.add_argument("--min-version", dest="dcm_min_version", default=None, help="Minimum acceptable version")
    install.add_argument("--force", action="store_true", default=False, help="Reinstall even when up to date")

    pi_update = subparsers.add_parser(
        "pi-update",
        parents=[common],
        help="Upgrade Raspberry Pi OS to Bookworm",
    )
    pi_update.add_argument("--dry-run", action="store_true", default=False, help="Log commands without running them")
    pi_update.add_argument("--no-reboot", dest="reboot", action="store_false", default=True, help="Do not reboot at the end")

    return parser.parse_args(argv)


def _apply_overrides(args: argparse.Namespace, settings: DockInventorySettings) -> DockInventorySettings:
    names = (
        "output_format",
        "store",
        "state_file",
        "model_filter_enabled",
        "dcm_installer_url",
        "dcm_installer_sha256",
        "dcm_min_version",
    )
    return settings.with_overrides(**{name: getattr(args, name, None) for name in names})


def run_detect(args: argparse.Namespace, settings: DockInventorySettings) -> int:
    model_filter = build_model_filter(settings.model_patterns) if settings.model_filter_enabled else None
    resolver = DeviceResolver(model_filter=model_filter)
    inventory = resolver.resolve_inventory(build_default_strategies(timeout=settings.query_timeout))

    try:
        store = create_store(settings.store, registry_path=settings.registry_path, state_file=settings.state_file)
        if store is not None:
            store.write_inventory(inventory)
    except StoreError as e:
        logger.error("Could not save detection results: %s", e)

    print(render(inventory, settings.output_format, include_attempts=args.show_attempts))
    return EXIT_OK if inventory.has_docks else EXIT_NO_DOCK


def run_install_dcm(args: argparse.Namespace, settings: DockInventorySettings) -> int:
    result = ensure_installed(
        settings,
        download_dir=DOWNLOADS_DIR,
        force=args.force,
        log_path=LOGS_DIR / "dcm-install.log",
    )
    print(f"{result.status.value}: {result.message}" + (f" (version {result.version})" if result.version else ""))
    if result.status is InstallStatus.REBOOT_REQUIRED:
        return EXIT_REBOOT_REQUIRED
    return EXIT_OK if result.succeeded else EXIT_FAILURE


def run_pi_update(args: argparse.Namespace, settings: DockInventorySettings) -> int:
    upgrade = PiUpgrade(build_runner(settings, dry_run=args.dry_run), settings, reboot=args.reboot)
    try:
        report = upgrade.run()
    except (CommandError, UpgradeError) as e:
        logger.error("Upgrade aborted: %s", e)
        return EXIT_FAILURE
    logger.info("Upgraded from %s to %s", report.initial_codename, report.final_codename)
    return EXIT_OK


COMMANDS = {
    "detect": run_detect,
    "install-dcm": run_install_dcm,
    "pi-update": run_pi_update,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    ensure_directories()
    settings = _apply_overrides(args, load_settings(args.config))

    default_log_file = None
    if args.command == "pi-update":
        default_log_file = LOGS_DIR / f"pi-update-{datetime.now():%Y%m%d-%H%M%S}.log"
    setup_logging(args, settings.log_level, default_log_file=default_log_file)

    logger.debug("Running %s", args.command)
    return COMMANDS[args.command](args, settings)


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return main(argv)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
