"""Reveal a folder in the host's file browser."""

from __future__ import annotations

import os
import platform
import subprocess
from pathlib import Path


def open_folder(path: Path) -> None:
    """Open *path* in Explorer / Finder / the desktop's file manager."""
    if not path.is_dir():
        raise FileNotFoundError(f"Folder not found: {path}")
    system = platform.system()
    if system == "Windows":
        os.startfile(str(path))  # type: ignore[attr-defined]
    elif system == "Darwin":
        subprocess.Popen(["open", str(path)])
    else:
        subprocess.Popen(
            ["xdg-open", str(path)],
            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
        )
