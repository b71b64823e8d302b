"""On-drive deployment layout.

Everything kiwidrive writes lives under one root directory on the volume::

    <volume>/KiwixPortable/
        tools/            kiwix-serve, kiwix-manage (refreshed on every install)
        content/          *.zim archives (never deleted by kiwidrive)
        app/kiwidrive/    bundled copy of this package for the menu
        library.xml       library descriptor (rebuildable cache)
        README.txt        operator instructions
        start-menu.bat    menu launcher (Windows)
        start-menu.sh     menu launcher (Linux/macOS)
        kiwidrive.json    settings (written once, operator-editable)
        server.log        kiwix-serve output
        server.pid        PID of the server started from the menu
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from kiwidrive.config import CONFIG_FILENAME

ARCHIVE_SUFFIX = ".zim"


def _exe(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


@dataclass(frozen=True)
class DeploymentPaths:
    root: Path

    @classmethod
    def for_volume(cls, volume_root: str | Path, dirname: str) -> DeploymentPaths:
        return cls(Path(volume_root) / dirname)

    @property
    def tools_dir(self) -> Path:
        return self.root / "tools"

    @property
    def content_dir(self) -> Path:
        return self.root / "content"

    @property
    def app_dir(self) -> Path:
        return self.root / "app"

    @property
    def library_file(self) -> Path:
        return self.root / "library.xml"

    @property
    def instructions_file(self) -> Path:
        return self.root / "README.txt"

    @property
    def windows_launcher(self) -> Path:
        return self.root / "start-menu.bat"

    @property
    def posix_launcher(self) -> Path:
        return self.root / "start-menu.sh"

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILENAME

    @property
    def server_log(self) -> Path:
        return self.root / "server.log"

    @property
    def pid_file(self) -> Path:
        return self.root / "server.pid"

    @property
    def server_exe(self) -> Path:
        return self.tools_dir / _exe("kiwix-serve")

    @property
    def manage_exe(self) -> Path:
        return self.tools_dir / _exe("kiwix-manage")

    def list_archives(self) -> list[Path]:
        """Return the recognized content archives, sorted by filename."""
        if not self.content_dir.is_dir():
            return []
        return sorted(
            (p for p in self.content_dir.iterdir()
             if p.is_file() and p.suffix.lower() == ARCHIVE_SUFFIX),
            key=lambda p: p.name.lower(),
        )
