"""Deployment staging engine.

Creates or refreshes the deployment on a chosen volume:

  1. Create the deployment root, tools/ and content/ (never cleared)
  2. Download the kiwix-tools archive into a temp dir off the volume
  3. Unpack it in the temp dir
  4. Copy the tools into tools/, overwriting older binaries
  5. Bundle this package into app/ so the menu runs from the drive
  6. Write README.txt and the menu launchers

Every step is idempotent; a failed run is repaired by running it again.
Nothing outside the deployment root is written, and content/ and
library.xml are never removed.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import httpx

import kiwidrive
from kiwidrive.config import DriveConfig
from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import (
    ArchiveExtractFailed,
    FilesystemWriteFailed,
    NetworkFetchFailed,
    StagingCancelled,
    StagingError,
)
from kiwidrive.fetch import FetchError, download
from kiwidrive.install import templates
from kiwidrive.install.volumes import Volume

logger = logging.getLogger(__name__)

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar")
_BUNDLE_SKIP = {"__pycache__"}


@dataclass
class StageStep:
    name: str
    status: str = "pending"  # pending, running, done, failed, skipped
    detail: str = ""


@dataclass
class StageResult:
    success: bool = False
    paths: DeploymentPaths | None = None
    steps: list[StageStep] = field(default_factory=list)
    error: StagingError | None = None


class StagingEngine:
    """Stages a deployment onto a volume."""

    def __init__(
        self,
        config: DriveConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or DriveConfig()
        self._client = client
        self._progress_callbacks: list[Callable[[StageStep], None]] = []

    def on_progress(self, callback: Callable[[StageStep], None]) -> None:
        """Register a callback for step status updates."""
        self._progress_callbacks.append(callback)

    def stage(self, volume: Volume, confirmed: bool) -> StageResult:
        """Run the full staging sequence against *volume*."""
        result = StageResult()
        steps = [
            StageStep("prepare", detail="Creating folders"),
            StageStep("download", detail="Downloading kiwix-tools"),
            StageStep("extract", detail="Unpacking kiwix-tools"),
            StageStep("install_tools", detail="Copying tools to the drive"),
            StageStep("bundle_app", detail="Copying the menu program"),
            StageStep("write_docs", detail="Writing instructions and launchers"),
        ]
        result.steps = steps

        if not confirmed:
            result.error = StagingCancelled("Staging was not confirmed; nothing was written.")
            for step in steps:
                step.status = "skipped"
            return result

        paths = DeploymentPaths.for_volume(volume.identifier, self.config.deployment_dirname)
        result.paths = paths

        try:
            self._update_step(steps[0], "running")
            self._prepare(paths)
            self._update_step(steps[0], "done")

            with tempfile.TemporaryDirectory(prefix="kiwidrive-") as tmp:
                tmp_dir = Path(tmp)

                self._update_step(steps[1], "running")
                archive = self._download_tools(tmp_dir)
                self._update_step(steps[1], "done")

                self._update_step(steps[2], "running")
                extracted = self._extract(archive, tmp_dir / "unpacked")
                self._update_step(steps[2], "done")

                self._update_step(steps[3], "running")
                count = self._install_tools(extracted, paths.tools_dir)
                self._update_step(steps[3], "done", f"{count} file(s) installed")

            self._update_step(steps[4], "running")
            self._bundle_app(paths)
            self._update_step(steps[4], "done")

            self._update_step(steps[5], "running")
            self._write_docs(paths)
            self._update_step(steps[5], "done")

            result.success = True

        except (StagingError, OSError) as e:
            if isinstance(e, OSError):
                # temp area could not be created or removed
                e = FilesystemWriteFailed(Path(e.filename or tempfile.gettempdir()), e)
            result.error = e
            logger.error("Staging failed on %s: %s", volume.identifier, e)
            for step in steps:
                if step.status == "running":
                    self._update_step(step, "failed", str(e))
                elif step.status == "pending":
                    step.status = "skipped"

        return result

    # ── Staging steps ──────────────────────────────────────────────

    def _prepare(self, paths: DeploymentPaths) -> None:
        for directory in (paths.root, paths.tools_dir, paths.content_dir):
            _mkdir(directory)

    def _download_tools(self, tmp_dir: Path) -> Path:
        url = self.config.tools_url
        try:
            name = httpx.URL(url).path.rstrip("/").rsplit("/", 1)[-1]
        except httpx.InvalidURL as exc:
            raise NetworkFetchFailed(f"Invalid tools URL {url!r}: {exc}") from exc
        archive = tmp_dir / (name or "kiwix-tools.archive")
        try:
            download(url, archive, client=self._client, timeout=self.config.http_timeout)
        except FetchError as exc:
            raise NetworkFetchFailed(str(exc)) from exc
        return archive

    @staticmethod
    def _extract(archive: Path, dest: Path) -> Path:
        """Unpack *archive* into *dest*; return the directory holding the tools."""
        dest.mkdir(parents=True, exist_ok=True)
        try:
            kind = _archive_kind(archive)
            if kind == "zip":
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(dest)
            elif kind == "tar":
                with tarfile.open(archive) as tar:
                    # Use data filter (Python 3.12+) to prevent path traversal
                    try:
                        tar.extractall(dest, filter="data")  # type: ignore[call-arg]
                    except TypeError:
                        for member in tar.getmembers():
                            member_path = (dest / member.name).resolve()
                            if not str(member_path).startswith(str(dest.resolve())):
                                raise ArchiveExtractFailed(f"Unsafe path in archive: {member.name}")
                        tar.extractall(dest)  # noqa: S202
            else:
                raise ArchiveExtractFailed(f"Unsupported archive format: {archive.name}")
        except (zipfile.BadZipFile, tarfile.TarError, EOFError, OSError) as exc:
            raise ArchiveExtractFailed(f"Cannot unpack {archive.name}: {exc}") from exc

        entries = list(dest.iterdir())
        if not entries:
            raise ArchiveExtractFailed(f"{archive.name} is empty")
        # Release archives wrap everything in kiwix-tools_<platform>-<version>/
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return dest

    @staticmethod
    def _install_tools(source: Path, tools_dir: Path) -> int:
        count = _mirror_tree(source, tools_dir)
        if os.name != "nt":
            for exe in tools_dir.glob("kiwix-*"):
                if exe.is_file():
                    _make_executable(exe)
        return count

    @staticmethod
    def _bundle_app(paths: DeploymentPaths) -> None:
        package_dir = Path(kiwidrive.__file__).resolve().parent
        target = paths.app_dir / package_dir.name
        if target.exists() and target.resolve() == package_dir:
            logger.info("Installer is running from %s; bundle left as is", target)
            return
        _mirror_tree(package_dir, target)

    def _write_docs(self, paths: DeploymentPaths) -> None:
        _write_text(paths.instructions_file, templates.render_instructions(paths, self.config))
        _write_text(paths.windows_launcher, templates.render_windows_launcher(), newline="\r\n")
        _write_text(paths.posix_launcher, templates.render_posix_launcher())
        _make_executable(paths.posix_launcher)
        if not paths.config_file.exists():
            try:
                self.config.save(paths.config_file)
            except OSError as exc:
                raise FilesystemWriteFailed(paths.config_file, exc) from exc

    def _update_step(self, step: StageStep, status: str, detail: str = "") -> None:
        """Update step status and notify callbacks."""
        step.status = status
        if detail:
            step.detail = detail
        for cb in self._progress_callbacks:
            try:
                cb(step)
            except Exception:
                logger.exception("Error in staging progress callback")


def stage(
    volume: Volume,
    confirmed: bool,
    config: DriveConfig | None = None,
    client: httpx.Client | None = None,
) -> DeploymentPaths:
    """Stage a deployment on *volume* and return its paths.

    Raises the :class:`StagingError` subclass describing the failure.
    """
    result = StagingEngine(config, client=client).stage(volume, confirmed)
    if result.error is not None:
        raise result.error
    assert result.paths is not None
    return result.paths


# ── Filesystem helpers ────────────────────────────────────────────


def _mkdir(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemWriteFailed(directory, exc) from exc


def _write_text(path: Path, text: str, newline: str | None = None) -> None:
    try:
        with open(path, "w", encoding="utf-8", newline=newline) as f:
            f.write(text)
    except OSError as exc:
        raise FilesystemWriteFailed(path, exc) from exc


def _make_executable(path: Path) -> None:
    # FAT/exFAT drives have no permission bits
    try:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as exc:
        logger.debug("chmod +x %s failed: %s", path, exc)


def _mirror_tree(source: Path, dest: Path) -> int:
    """Copy *source* into *dest*, overwriting files. Never deletes anything in *dest*."""
    _mkdir(dest)
    count = 0
    for src in sorted(source.rglob("*")):
        rel = src.relative_to(source)
        if _BUNDLE_SKIP.intersection(rel.parts) or src.suffix == ".pyc":
            continue
        target = dest / rel
        if src.is_dir():
            _mkdir(target)
            continue
        try:
            shutil.copyfile(src, target)
        except OSError as exc:
            raise FilesystemWriteFailed(target, exc) from exc
        if os.access(src, os.X_OK) and os.name != "nt":
            _make_executable(target)
        count += 1
    return count


def _archive_kind(archive: Path) -> str | None:
    """"zip" or "tar" from the file name, else from the file's contents."""
    name = archive.name.lower()
    if name.endswith(".zip"):
        return "zip"
    if name.endswith(_TAR_SUFFIXES):
        return "tar"
    if zipfile.is_zipfile(archive):
        return "zip"
    if tarfile.is_tarfile(archive):
        return "tar"
    return None
