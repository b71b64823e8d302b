"""Interactive CLI installer for kiwidrive.

  [1/3] Find removable drives
  [2/3] Choose a drive and confirm
  [3/3] Stage the deployment

Run with: python -m kiwidrive.install
"""

from __future__ import annotations

import logging
from pathlib import Path

from kiwidrive.config import DriveConfig
from kiwidrive.console import _input, _print, confirm, format_bytes
from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import NoEligibleVolume, StagingCancelled
from kiwidrive.install.staging import StageStep, StagingEngine
from kiwidrive.install.volumes import (
    SelectionInvalid,
    Volume,
    list_candidate_volumes,
    match_volume,
    volume_for_path,
)

logger = logging.getLogger(__name__)


BANNER = r"""
+----------------------------------------------+
|      Kiwix Portable - USB Drive Installer    |
+----------------------------------------------+
"""

DONE_BANNER = """
+----------------------------------------------+
|  Done. The drive is ready.                   |
|                                              |
|  On any computer, open the drive folder      |
|  {dirname:<44}|
|  and run start-menu.bat (Windows) or         |
|  start-menu.sh (Linux/macOS).                |
|                                              |
|  Put .zim files in content/ or use the menu  |
|  to fetch the optional content pack.         |
+----------------------------------------------+
"""

_STEP_MARKS = {"running": "..", "done": "ok", "failed": "!!", "skipped": "--"}


def _print_step(step: StageStep) -> None:
    if step.status == "running":
        _print(f"  .. {step.detail}")
    elif step.status in ("done", "failed"):
        _print(f"  {_STEP_MARKS[step.status]} {step.name}: {step.detail}")


def _choose_volume(volumes: list[Volume], volume_id: str | None, non_interactive: bool) -> Volume:
    if non_interactive:
        if not volume_id:
            raise SelectionInvalid("Pass --volume to choose one of the listed drives.")
        return match_volume(volume_id, volumes)

    if volume_id:
        try:
            return match_volume(volume_id, volumes)
        except SelectionInvalid as exc:
            _print(f"  {exc}")

    while True:
        try:
            raw = _input("\n  Drive to install on (as listed above): ")
        except EOFError:
            _print("\n  No drive chosen. Nothing was written.")
            raise StagingCancelled("No drive was chosen") from None
        try:
            return match_volume(raw, volumes)
        except SelectionInvalid as exc:
            _print(f"  {exc} Try again, or press Ctrl+C to quit.")


def run_installer(
    config: DriveConfig | None = None,
    target: Path | None = None,
    volume_id: str | None = None,
    non_interactive: bool = False,
    assume_yes: bool = False,
) -> DeploymentPaths:
    """Run the installer and return the staged deployment paths.

    Args:
        config:          Settings (defaults when omitted).
        target:          Stage into this directory instead of a detected drive.
        volume_id:       Preselected drive identifier.
        non_interactive: Never prompt; requires ``volume_id`` (or ``target``)
                         and ``assume_yes`` to write anything.
        assume_yes:      Treat the confirmation gate as accepted.

    Raises :class:`~kiwidrive.errors.StagingError` subclasses on failure.
    """
    config = config or DriveConfig()
    _print(BANNER)

    # ── [1/3] Drives ───────────────────────────────────────────
    _print("[1/3] Looking for removable drives...")
    if target is not None:
        volumes = [volume_for_path(target)]
    else:
        volumes = list_candidate_volumes()
    if not volumes:
        _print("  No USB or removable drive found.")
        _print("  Plug the drive in (and make sure it is mounted), then run the installer again.")
        raise NoEligibleVolume("No eligible volume found")
    for vol in volumes:
        _print(f"  {vol.describe()}")

    # ── [2/3] Selection ────────────────────────────────────────
    _print("\n[2/3] Choosing the drive...")
    if target is not None:
        volume = volumes[0]
    else:
        volume = _choose_volume(volumes, volume_id, non_interactive)
    paths = DeploymentPaths.for_volume(volume.identifier, config.deployment_dirname)

    _print(f"\n  Selected: {volume.identifier} {volume.label}".rstrip())
    _print(f"  Free space: {format_bytes(volume.free_bytes)}")
    _print(f"  Files will be written to {paths.root}")
    _print("  Nothing outside that folder is changed; existing content is kept.")
    if non_interactive:
        confirmed = assume_yes
    else:
        confirmed = assume_yes or confirm("\n  Install onto this drive?", config.confirm_token)
    if not confirmed:
        _print("  Cancelled. Nothing was written.")
        raise StagingCancelled("Installation cancelled by operator")

    # ── [3/3] Staging ──────────────────────────────────────────
    _print("\n[3/3] Setting up the drive...")
    engine = StagingEngine(config)
    engine.on_progress(_print_step)
    result = engine.stage(volume, confirmed=confirmed)
    if result.error is not None:
        _print(f"\n  Installation failed: {result.error}")
        _print("  Nothing was deleted. Fix the problem and run the installer again.")
        raise result.error

    _print(DONE_BANNER.format(dirname=str(paths.root)[:44]))
    return paths
