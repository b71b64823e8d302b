"""Removable volume discovery for the kiwidrive installer.

Lists mounted volumes that are either removable media or live on a
USB-attached disk. Probing is read-only and best-effort: a failing probe
yields no volumes, never an exception.

  - Linux:   lsblk JSON (partitions inherit RM/TRAN from their disk)
  - Windows: PowerShell Get-Volume / Get-Partition / Get-Disk
  - macOS:   diskutil info -plist for every mount under /Volumes
"""

from __future__ import annotations

import json
import logging
import os
import platform
import plistlib
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from kiwidrive.errors import KiwidriveError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Volume:
    identifier: str  # mount point ("/media/usb", "E:\\")
    label: str = ""
    total_bytes: int = 0
    free_bytes: int = 0
    removable: bool = False
    bus: str = ""  # "usb", "sata", "nvme", ...

    @property
    def is_candidate(self) -> bool:
        return bool(self.identifier) and (self.removable or self.bus.lower() == "usb")

    @property
    def key(self) -> str:
        return normalize_identifier(self.identifier)

    def describe(self) -> str:
        from kiwidrive.console import format_bytes
        label = self.label or "(no label)"
        return (
            f"{self.identifier:<24} {label:<20} "
            f"{format_bytes(self.total_bytes):>10} total {format_bytes(self.free_bytes):>10} free"
        )


class SelectionInvalid(KiwidriveError):
    """The operator's input did not match any discovered volume."""


# ──────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────

def _run(cmd: list[str], timeout: int = 15) -> str:
    """Run a subprocess and return stdout, or empty string on failure."""
    try:
        result = subprocess.run(
            cmd,
            capture_output=True, text=True, timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s failed: %s", cmd[0], exc)
        return ""
    if result.returncode != 0:
        logger.debug("%s exited %d: %s", cmd[0], result.returncode, result.stderr.strip())
    return result.stdout.strip()


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _disk_usage(path: str) -> tuple[int, int]:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return 0, 0
    return usage.total, usage.free


def normalize_identifier(raw: str) -> str:
    """Canonical form used for matching: trimmed, no trailing separators, case-folded."""
    text = raw.strip()
    stripped = text.rstrip("/\\:")
    if not stripped and text.startswith("/"):
        return "/"
    return stripped.casefold()


# ──────────────────────────────────────────────────────────────────
# Linux
# ──────────────────────────────────────────────────────────────────

_LSBLK_COLUMNS = "NAME,LABEL,SIZE,FSAVAIL,RM,TRAN,MOUNTPOINT,TYPE"


def parse_lsblk(output: str) -> list[Volume]:
    """Parse ``lsblk -J -b`` output into mounted volumes."""
    try:
        data = json.loads(output) if output else {}
    except json.JSONDecodeError:
        logger.warning("Unparseable lsblk output")
        return []

    volumes: list[Volume] = []

    def walk(dev: dict[str, Any], parent_rm: bool, parent_tran: str) -> None:
        removable = _to_bool(dev.get("rm")) or parent_rm
        tran = (dev.get("tran") or parent_tran or "").lower()
        mount = dev.get("mountpoint")
        if not mount:
            mounts = [m for m in dev.get("mountpoints") or [] if m]
            mount = mounts[0] if mounts else None
        if mount and mount.startswith("/") and dev.get("type") != "loop":
            total = _to_int(dev.get("size"))
            free = _to_int(dev.get("fsavail"))
            if dev.get("fsavail") is None:
                total, free = _disk_usage(mount)
            volumes.append(Volume(
                identifier=mount,
                label=dev.get("label") or "",
                total_bytes=total,
                free_bytes=free,
                removable=removable,
                bus=tran,
            ))
        for child in dev.get("children") or []:
            walk(child, removable, tran)

    for dev in data.get("blockdevices", []):
        walk(dev, False, "")
    return volumes


def detect_linux_volumes() -> list[Volume]:
    return parse_lsblk(_run(["lsblk", "-J", "-b", "-o", _LSBLK_COLUMNS]))


# ──────────────────────────────────────────────────────────────────
# Windows
# ──────────────────────────────────────────────────────────────────

_POWERSHELL_QUERY = (
    "Get-Volume | Where-Object { $_.DriveLetter } | ForEach-Object { "
    "$v = $_; $bus = ''; "
    "try { $bus = [string](Get-Partition -DriveLetter $v.DriveLetter -ErrorAction Stop "
    "| Get-Disk -ErrorAction Stop).BusType } catch { }; "
    "[pscustomobject]@{ DriveLetter = [string]$v.DriveLetter; "
    "Label = $v.FileSystemLabel; Size = $v.Size; SizeRemaining = $v.SizeRemaining; "
    "DriveType = [string]$v.DriveType; BusType = $bus } "
    "} | ConvertTo-Json -Compress"
)


def parse_windows_volumes(output: str) -> list[Volume]:
    """Parse the JSON emitted by :data:`_POWERSHELL_QUERY`."""
    try:
        data = json.loads(output) if output else []
    except json.JSONDecodeError:
        logger.warning("Unparseable Get-Volume output")
        return []
    if isinstance(data, dict):
        data = [data]

    volumes = []
    for item in data:
        letter = (item.get("DriveLetter") or "").strip()
        if not letter:
            continue
        volumes.append(Volume(
            identifier=f"{letter.upper()}:\\",
            label=item.get("Label") or "",
            total_bytes=_to_int(item.get("Size")),
            free_bytes=_to_int(item.get("SizeRemaining")),
            removable=str(item.get("DriveType", "")).lower() == "removable",
            bus=str(item.get("BusType") or "").lower(),
        ))
    return volumes


def detect_windows_volumes() -> list[Volume]:
    return parse_windows_volumes(
        _run(["powershell", "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_QUERY])
    )


# ──────────────────────────────────────────────────────────────────
# macOS
# ──────────────────────────────────────────────────────────────────

def parse_diskutil(output: bytes) -> Volume | None:
    """Parse ``diskutil info -plist`` for one mount point."""
    try:
        info = plistlib.loads(output)
    except (plistlib.InvalidFileException, ValueError):
        return None
    mount = info.get("MountPoint") or ""
    if not mount or mount == "/":
        return None
    removable = any(
        _to_bool(info.get(key))
        for key in ("RemovableMedia", "Removable", "RemovableMediaOrExternalDevice")
    ) or (_to_bool(info.get("Ejectable")) and not _to_bool(info.get("Internal")))
    free = info.get("FreeSpace") or info.get("APFSContainerFree") or info.get("VolumeAvailableSpace")
    return Volume(
        identifier=mount,
        label=info.get("VolumeName") or "",
        total_bytes=_to_int(info.get("TotalSize") or info.get("Size")),
        free_bytes=_to_int(free),
        removable=removable,
        bus=str(info.get("BusProtocol") or "").lower(),
    )


def detect_macos_volumes(volumes_root: str = "/Volumes") -> list[Volume]:
    root = Path(volumes_root)
    if not root.is_dir():
        return []
    volumes = []
    for entry in sorted(root.iterdir()):
        if not os.path.ismount(entry):
            continue
        out = _run(["diskutil", "info", "-plist", str(entry)])
        if not out:
            continue
        vol = parse_diskutil(out.encode("utf-8"))
        if vol is not None:
            volumes.append(vol)
    return volumes


# ──────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────

_DETECTORS: dict[str, Callable[[], list[Volume]]] = {
    "Linux": detect_linux_volumes,
    "Windows": detect_windows_volumes,
    "Darwin": detect_macos_volumes,
}


def select_candidates(volumes: Iterable[Volume]) -> list[Volume]:
    """Keep removable/USB volumes with a mount identifier, one per identifier, sorted."""
    merged: dict[str, Volume] = {}
    for vol in volumes:
        if not vol.is_candidate:
            continue
        seen = merged.get(vol.key)
        if seen is None:
            merged[vol.key] = vol
        else:
            merged[vol.key] = Volume(
                identifier=seen.identifier,
                label=seen.label or vol.label,
                total_bytes=seen.total_bytes or vol.total_bytes,
                free_bytes=seen.free_bytes or vol.free_bytes,
                removable=seen.removable or vol.removable,
                bus=seen.bus or vol.bus,
            )
    return [merged[k] for k in sorted(merged)]


def list_candidate_volumes(system: str | None = None) -> list[Volume]:
    """Return eligible target volumes for this host (possibly empty)."""
    system = system or platform.system()
    detector = _DETECTORS.get(system)
    if detector is None:
        logger.warning("Volume discovery is not supported on %s", system)
        return []
    candidates = select_candidates(detector())
    logger.info("volume scan found %d candidate(s)", len(candidates))
    return candidates


def volume_for_path(path: str | Path) -> Volume:
    """Wrap an operator-supplied directory as a synthetic volume."""
    path = Path(path).expanduser().resolve()
    total, free = _disk_usage(str(path))
    return Volume(
        identifier=str(path),
        label=path.name,
        total_bytes=total,
        free_bytes=free,
        removable=True,
        bus="",
    )


def match_volume(raw: str, volumes: Iterable[Volume]) -> Volume:
    """Match free-form operator input against *volumes*.

    Raises :class:`SelectionInvalid` when nothing matches; never guesses.
    """
    wanted = normalize_identifier(raw or "")
    if not wanted:
        raise SelectionInvalid("No drive entered.")
    for vol in volumes:
        if vol.key == wanted:
            return vol
    raise SelectionInvalid(f"'{raw.strip()}' is not one of the listed drives.")
