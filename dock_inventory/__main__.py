"""Allow ``python -m dock_inventory``."""

from __future__ import annotations

import sys
from multiprocessing import freeze_support


def main() -> None:
    # Required for the PyInstaller build Intune deploys
    freeze_support()

    from dock_inventory import run
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
