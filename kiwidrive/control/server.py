"""kiwix-serve process control.

Start launches kiwix-serve detached with its output in server.log and
records the PID in server.pid. Stop terminates that recorded process
only; the broad "kill every kiwix-serve" behaviour is opt-in through
``DriveConfig.stop_by_name``.

Start does not wait for the server to bind its port: if the port is taken
the process exits on its own and the reason is in server.log.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import psutil

from kiwidrive.config import DriveConfig
from kiwidrive.control.library import LibraryManager, RebuildReport, Registration
from kiwidrive.control.network import get_lan_ip, server_urls
from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import ExternalToolMissing, KiwidriveError

logger = logging.getLogger(__name__)

_STOP_TIMEOUT = 5.0


class ServerAccessDenied(KiwidriveError):
    """The process recorded in server.pid exists but may not be inspected."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(
            f"Not allowed to check process {pid} recorded in server.pid; it may still be "
            "running. Stop it from an administrator prompt or the task manager."
        )


@dataclass
class StartResult:
    pid: int
    urls: list[str]
    rebuild: RebuildReport | None = None
    already_running: bool = False


def _detach_kwargs() -> dict:
    if os.name == "nt":
        flags = (
            getattr(subprocess, "DETACHED_PROCESS", 0x00000008)
            | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200)
        )
        return {"creationflags": flags}
    return {"start_new_session": True}


class ServerController:
    """Starts and stops the kiwix-serve instance belonging to one deployment."""

    def __init__(
        self,
        paths: DeploymentPaths,
        config: DriveConfig,
        library: LibraryManager | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        lan_ip: Callable[[], str | None] = get_lan_ip,
    ) -> None:
        self.paths = paths
        self.config = config
        self.library = library or LibraryManager(paths)
        self._popen = popen
        self._lan_ip = lan_ip

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def command(self) -> list[str]:
        return [
            str(self.paths.server_exe),
            "--library",
            "--address", self.config.bind_address,
            "--port", str(self.config.port),
            "--monitorLibrary",
            str(self.paths.library_file),
        ]

    def urls(self) -> list[str]:
        return server_urls(self.config.port, self._lan_ip())

    def start(self, on_result: Callable[[Registration], None] | None = None) -> StartResult:
        """Launch kiwix-serve, building library.xml first if it is missing."""
        if not self.paths.server_exe.is_file():
            raise ExternalToolMissing(self.paths.server_exe)

        running = self._recorded_process()
        if running is not None:
            logger.info("kiwix-serve already running (pid %d)", running.pid)
            return StartResult(running.pid, self.urls(), already_running=True)

        rebuild = self.library.ensure(on_result)

        cmd = self.command()
        logger.info("Starting %s", " ".join(cmd))
        with open(self.paths.server_log, "ab") as log:
            log.write(f"\n=== {datetime.now().isoformat(timespec='seconds')} {' '.join(cmd)}\n".encode())
            log.flush()
            proc = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                cwd=str(self.paths.root),
                **_detach_kwargs(),
            )
        self.paths.pid_file.write_text(f"{proc.pid}\n", encoding="utf-8")
        return StartResult(proc.pid, self.urls(), rebuild=rebuild)

    def stop(self) -> int:
        """Stop the recorded server (and, if configured, any kiwix-serve).

        Returns the number of processes terminated; zero is not an error.
        server.pid is kept when the recorded process could not be checked or
        stopped, and :class:`ServerAccessDenied` is raised.
        """
        targets: list[psutil.Process] = []
        recorded = self._recorded_process()
        if recorded is not None:
            targets.append(recorded)
        if self.config.stop_by_name:
            seen = {p.pid for p in targets}
            targets.extend(p for p in self._processes_by_name() if p.pid not in seen)

        stopped, refused = _terminate(targets)
        if recorded is not None and recorded in refused:
            raise ServerAccessDenied(recorded.pid)
        self._clear_pid()
        logger.info("Stopped %d kiwix-serve process(es)", stopped)
        return stopped

    def recorded_pid(self) -> int | None:
        try:
            return int(self.paths.pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def is_running(self) -> bool:
        """True when the recorded server is alive, or exists and cannot be checked."""
        try:
            return self._recorded_process() is not None
        except ServerAccessDenied:
            return True

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _recorded_process(self) -> psutil.Process | None:
        """The recorded PID, if it is still alive and still kiwix-serve.

        Raises :class:`ServerAccessDenied` when the process exists but the
        operating system refuses to describe it.
        """
        pid = self.recorded_pid()
        if pid is None:
            return None
        try:
            proc = psutil.Process(pid)
            if proc.is_running() and self._is_server(proc.name()):
                return proc
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            pass
        except psutil.AccessDenied as exc:
            raise ServerAccessDenied(pid) from exc
        return None

    def _processes_by_name(self) -> list[psutil.Process]:
        found = []
        for proc in psutil.process_iter(["name"]):
            try:
                if self._is_server(proc.info.get("name") or ""):
                    found.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass
        return found

    def _is_server(self, name: str) -> bool:
        return name.lower() == self.paths.server_exe.name.lower()

    def _clear_pid(self) -> None:
        try:
            self.paths.pid_file.unlink()
        except FileNotFoundError:
            pass


def _terminate(procs: list[psutil.Process]) -> tuple[int, list[psutil.Process]]:
    """Terminate *procs*, killing stragglers; return (stopped, refused)."""
    stopped = 0
    live = []
    refused = []
    for proc in procs:
        try:
            proc.terminate()
            live.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Not allowed to stop pid %d", proc.pid)
            refused.append(proc)
    gone, alive = psutil.wait_procs(live, timeout=_STOP_TIMEOUT)
    stopped += len(gone)
    for proc in alive:
        try:
            proc.kill()
            stopped += 1
        except psutil.NoSuchProcess:
            stopped += 1
        except psutil.AccessDenied:
            logger.warning("Not allowed to kill pid %d", proc.pid)
            refused.append(proc)
    return stopped, refused
