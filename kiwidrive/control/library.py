"""Library descriptor maintenance via kiwix-manage.

library.xml is a cache: :meth:`LibraryManager.rebuild` throws it away and
registers every archive found in content/, one ``kiwix-manage add`` call
per file. A file that fails to register is reported and skipped.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import ExternalToolMissing

logger = logging.getLogger(__name__)

EMPTY_LIBRARY = '<?xml version="1.0" encoding="UTF-8"?>\n<library version="20110515">\n</library>\n'


@dataclass
class Registration:
    filename: str
    ok: bool
    detail: str = ""


@dataclass
class RebuildReport:
    results: list[Registration] = field(default_factory=list)

    @property
    def succeeded(self) -> list[Registration]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[Registration]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> str:
        return f"{len(self.succeeded)} succeeded, {len(self.failed)} failed"


Runner = Callable[..., subprocess.CompletedProcess]


class LibraryManager:
    """Rebuilds library.xml from the archives in content/."""

    def __init__(self, paths: DeploymentPaths, runner: Runner = subprocess.run) -> None:
        self.paths = paths
        self._run = runner

    def exists(self) -> bool:
        return self.paths.library_file.is_file()

    def check_tool(self) -> None:
        if not self.paths.manage_exe.is_file():
            raise ExternalToolMissing(self.paths.manage_exe)

    def reset(self) -> None:
        """Replace library.xml with an empty library."""
        self.paths.library_file.write_text(EMPTY_LIBRARY, encoding="utf-8")

    def register(self, archive: Path) -> Registration:
        """Add one archive to library.xml."""
        cmd = [str(self.paths.manage_exe), str(self.paths.library_file), "add", str(archive)]
        try:
            proc = self._run(
                cmd,
                capture_output=True, text=True,
                check=False,
            )
        except OSError as exc:
            logger.warning("kiwix-manage could not run for %s: %s", archive.name, exc)
            return Registration(archive.name, False, str(exc))
        if proc.returncode != 0:
            reason = _last_line(proc.stderr) or _last_line(proc.stdout) or f"exit code {proc.returncode}"
            logger.warning("Registration of %s failed: %s", archive.name, reason)
            return Registration(archive.name, False, reason)
        return Registration(archive.name, True)

    def rebuild(self, on_result: Callable[[Registration], None] | None = None) -> RebuildReport:
        """Regenerate library.xml from scratch. No archives is not an error."""
        self.check_tool()
        self.reset()
        report = RebuildReport()
        archives = self.paths.list_archives()
        logger.info("Rebuilding library from %d archive(s)", len(archives))
        for archive in archives:
            registration = self.register(archive)
            report.results.append(registration)
            if on_result is not None:
                on_result(registration)
        logger.info("Library rebuilt: %s", report.summary())
        return report

    def ensure(self, on_result: Callable[[Registration], None] | None = None) -> RebuildReport | None:
        """Rebuild only when library.xml is missing. Returns the report if one ran."""
        if self.exists():
            return None
        return self.rebuild(on_result)


def _last_line(text: str | None) -> str:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    return lines[-1] if lines else ""
