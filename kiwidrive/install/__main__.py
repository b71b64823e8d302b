"""kiwidrive installer entry point.

Usage::

    python -m kiwidrive.install [--volume ID] [--target PATH] [--config FILE]
                                [--non-interactive --yes] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from kiwidrive.errors import ConfigError, StagingError, UserCancelled


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m kiwidrive.install",
        description="Install the portable Kiwix library onto a USB drive",
    )
    parser.add_argument(
        "--volume",
        metavar="ID",
        default=None,
        help="Drive to install on (mount point or drive letter, as listed)",
    )
    parser.add_argument(
        "--target",
        metavar="PATH",
        default=None,
        help="Install into this directory instead of a detected drive",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        default=None,
        help="Settings file (default: built-in settings, KIWIDRIVE_* env vars)",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt (requires --volume or --target, and --yes)",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Accept the confirmation prompt",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    from kiwidrive.config import DriveConfig
    from kiwidrive.install.volumes import SelectionInvalid
    from kiwidrive.install.wizard import run_installer

    try:
        config = DriveConfig.load(args.config)
        run_installer(
            config=config,
            target=Path(args.target) if args.target else None,
            volume_id=args.volume,
            non_interactive=args.non_interactive,
            assume_yes=args.yes,
        )
    except UserCancelled:
        return 1
    except (StagingError, SelectionInvalid, ConfigError) as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\n\nInstallation cancelled.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
