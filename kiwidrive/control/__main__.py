"""kiwidrive control menu entry point.

Usage::

    python -m kiwidrive.control --root PATH [--config FILE] [--command NAME] [-v]

The on-drive launchers (start-menu.bat / start-menu.sh) call this with
``--root`` set to the deployment folder.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

COMMANDS = ("start", "stop", "rebuild", "open", "info", "fetch", "status")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m kiwidrive.control",
        description="Kiwix Portable control menu",
    )
    parser.add_argument(
        "--root",
        metavar="PATH",
        required=True,
        help="Deployment folder on the drive (the one holding tools/ and content/)",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        default=None,
        help="Settings file (default: kiwidrive.json in the deployment folder)",
    )
    parser.add_argument(
        "--command",
        choices=COMMANDS,
        default=None,
        help="Run one command and exit instead of showing the menu",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    from kiwidrive.config import DriveConfig
    from kiwidrive.control.menu import ControlLoop
    from kiwidrive.deployment import DeploymentPaths
    from kiwidrive.errors import ConfigError

    paths = DeploymentPaths(Path(args.root).expanduser().resolve())
    if not paths.root.is_dir():
        print(f"Error: {paths.root} does not exist. Run the installer first.", file=sys.stderr)
        return 2
    try:
        config = DriveConfig.load(args.config or paths.config_file)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    loop = ControlLoop(paths, config)

    if args.command:
        return 0 if loop.run_command(args.command) else 1
    loop.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
