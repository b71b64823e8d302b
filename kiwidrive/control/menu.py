"""Operator menu for a staged deployment.

The loop holds no state besides the deployment paths and settings; every
command looks at the drive afresh, so the menu can be closed, crash or be
started on another computer without losing anything. A failing command
is reported and the menu comes back; only Exit leaves the loop.
"""

from __future__ import annotations

import logging
import shutil
from typing import Callable

from kiwidrive.config import DriveConfig
from kiwidrive.console import _input, _print, confirm, format_bytes
from kiwidrive.control import content
from kiwidrive.control.content import ContentItem
from kiwidrive.control.desktop import open_folder
from kiwidrive.control.library import LibraryManager, Registration
from kiwidrive.control.server import ServerController
from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import KiwidriveError, UserCancelled
from kiwidrive.fetch import ProgressCallback

logger = logging.getLogger(__name__)

MENU = """
==============================================
  Kiwix Portable - {root}
==============================================
  1. Start server
  2. Stop server
  3. Rebuild library
  4. Open content folder
  5. Show connection info
  6. Fetch optional content pack
  7. Status
  0. Exit
"""


def _print_registration(reg: Registration) -> None:
    if reg.ok:
        _print(f"  ok  {reg.filename}")
    else:
        _print(f"  !!  {reg.filename}: {reg.detail}")


class ControlLoop:
    """Numbered-menu session bound to one deployment."""

    def __init__(
        self,
        paths: DeploymentPaths,
        config: DriveConfig,
        library: LibraryManager | None = None,
        server: ServerController | None = None,
    ) -> None:
        self.paths = paths
        self.config = config
        self.library = library or LibraryManager(paths)
        self.server = server or ServerController(paths, config, library=self.library)
        self.commands: dict[str, tuple[str, Callable[[], None]]] = {
            "1": ("start", self.start_server),
            "2": ("stop", self.stop_server),
            "3": ("rebuild", self.rebuild_library),
            "4": ("open", self.open_content_folder),
            "5": ("info", self.show_connection_info),
            "6": ("fetch", self.fetch_content_pack),
            "7": ("status", self.show_status),
        }

    # ------------------------------------------------------------------ #
    # Loop
    # ------------------------------------------------------------------ #

    def run(self) -> None:
        """Show the menu until the operator picks Exit (or input ends)."""
        while True:
            _print(MENU.format(root=self.paths.root))
            try:
                choice = _input("Choose an option: ")
            except (EOFError, KeyboardInterrupt):
                _print()
                break
            if choice in ("0", "q", "quit", "exit"):
                break
            self.dispatch(choice)
        _print("Bye. A running server keeps running until you stop it.")

    def dispatch(self, choice: str) -> bool:
        """Run the command bound to *choice*; True when it completed without error."""
        entry = self.commands.get(choice.strip())
        if entry is None:
            _print(f"  '{choice}' is not a menu option.")
            return False
        return self.run_command(entry[0])

    def run_command(self, name: str) -> bool:
        """Run a command by name, containing any failure at this boundary."""
        handlers = {n: h for n, h in self.commands.values()}
        handler = handlers.get(name)
        if handler is None:
            raise KeyError(name)
        try:
            handler()
            return True
        except UserCancelled as exc:
            _print(f"  Cancelled. {exc}")
        except KiwidriveError as exc:
            _print(f"  Error: {exc}")
        except KeyboardInterrupt:
            _print("\n  Interrupted.")
        except Exception as exc:
            logger.exception("Command %s failed", name)
            _print(f"  Unexpected error: {exc}")
        return False

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def start_server(self) -> None:
        if not self.library.exists():
            _print("  No library yet, building it from content/ ...")
        result = self.server.start(on_result=_print_registration)
        if result.rebuild is not None:
            _print(f"  Library: {result.rebuild.summary()}")
        if result.already_running:
            _print(f"  The server is already running (pid {result.pid}).")
        else:
            _print(f"  Server started (pid {result.pid}), output in {self.paths.server_log.name}.")
        self._print_urls(result.urls)

    def stop_server(self) -> None:
        count = self.server.stop()
        if count:
            _print(f"  Server stopped ({count} process(es)).")
        else:
            _print("  Server stopped (it was not running).")

    def rebuild_library(self) -> None:
        archives = self.paths.list_archives()
        _print(f"  Rebuilding library from {len(archives)} archive(s)...")
        report = self.library.rebuild(on_result=_print_registration)
        _print(f"  Done: {report.summary()}.")
        if report.failed:
            _print("  Files that failed may be damaged or still downloading.")
        if self.server.is_running():
            _print("  The running server picks up the new library automatically.")

    def open_content_folder(self) -> None:
        open_folder(self.paths.content_dir)
        _print(f"  Opened {self.paths.content_dir}")

    def show_connection_info(self) -> None:
        self._print_urls(self.server.urls())

    def fetch_content_pack(self) -> None:
        items = ContentItem.from_config(self.config.content_pack)
        if not items:
            _print("  No content pack is configured.")
            return
        _print("  The optional content pack contains:")
        for item in items:
            _print(f"    - {item.filename}")
        _print("  This is a very large download (tens of gigabytes) and can take many hours.")
        _print(f"  Free space on the drive: {format_bytes(_free_bytes(self.paths))}")
        confirmed = confirm("  Start the download?", self.config.confirm_token)
        if not confirmed:
            raise UserCancelled("Nothing was downloaded.")

        def on_item(result) -> None:
            if result.status == "done":
                _print(f"\n  ok  {result.item.filename} ({format_bytes(result.bytes_written)})")
            elif result.status == "skipped":
                _print(f"  --  {result.detail}")
            else:
                _print(f"\n  !!  {result.item.filename}: {result.detail}")
                _print("      Run this command again to restart the download.")

        report = content.fetch_content_pack(
            self.paths, items, confirmed,
            timeout=self.config.http_timeout,
            on_item=on_item,
            progress=_progress_printer,
        )
        _print(f"  Content pack {report.summary()}.")
        if any(r.status == "done" for r in report.results):
            _print("  Choose 'Rebuild library' to make the new files available.")

    def show_status(self) -> None:
        archives = self.paths.list_archives()
        size = sum(p.stat().st_size for p in archives)
        pid = self.server.recorded_pid()
        _print(f"  Deployment: {self.paths.root}")
        _print(f"  Tools:      {'present' if self.paths.server_exe.is_file() else 'MISSING'}")
        _print(f"  Archives:   {len(archives)} ({format_bytes(size)})")
        _print(f"  Library:    {'present' if self.library.exists() else 'not built yet'}")
        if self.server.is_running():
            _print(f"  Server:     running (pid {pid}) on port {self.config.port}")
        else:
            _print("  Server:     not running")
        _print(f"  Free space: {format_bytes(_free_bytes(self.paths))}")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _print_urls(self, urls: list[str]) -> None:
        _print("  Open in a browser:")
        _print(f"    On this computer:   {urls[0]}")
        if len(urls) > 1:
            _print(f"    On the network:     {urls[1]}")
        else:
            _print("    On the network:     could not detect this computer's IP address;")
            _print(f"                        look it up and use http://<ip>:{self.config.port}")


def _free_bytes(paths: DeploymentPaths) -> int | None:
    try:
        return shutil.disk_usage(paths.root).free
    except OSError:
        return None


def _progress_printer(item: ContentItem) -> ProgressCallback:
    step = 64 * 1024 * 1024
    last = {"mark": -1}

    def report(done: int, total: int | None) -> None:
        mark = done // step
        if mark == last["mark"]:
            return
        last["mark"] = mark
        line = f"  {item.filename}: {format_bytes(done)}"
        if total:
            line += f" / {format_bytes(total)} ({done * 100 // total}%)"
        # same line, redrawn in place
        print("\r" + line, end="", flush=True)

    return report
