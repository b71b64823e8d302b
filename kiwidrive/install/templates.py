"""Generated on-drive documents: operator instructions and menu launchers."""

from __future__ import annotations

from kiwidrive.config import DriveConfig
from kiwidrive.deployment import DeploymentPaths

INSTRUCTIONS = """\
KIWIX PORTABLE: OFFLINE LIBRARY
===============================

This drive carries an offline library server. Plug it into any computer
with Python 3 installed (plus the psutil and httpx packages:
"pip install psutil httpx") and start the menu:

  Windows:       double-click start-menu.bat
  Linux / macOS: run  sh start-menu.sh  from a terminal

MENU
----
  1  Start server        Serve everything in content/ on port {port}.
  2  Stop server         Stop the server started from this drive.
  3  Rebuild library     Re-register every .zim file in content/.
  4  Open content folder Show the content/ folder.
  5  Connection info     Show the addresses to open in a browser.
  6  Fetch content pack  Download the optional content pack (very large).
  7  Status              Show what is on the drive and whether it is serving.
  0  Exit                Leave the menu. A running server keeps running.

ADDING CONTENT
--------------
Copy .zim files into the content/ folder, then choose "Rebuild library"
(or just start the server: the library is built automatically the first
time). Files can be downloaded from https://library.kiwix.org

READING
-------
On this computer open   http://localhost:{port}
Other devices on the same network can open  http://<this computer's IP>:{port}
The menu shows the address when it can find it. If it cannot, look up the
computer's IP address in its network settings.

The content pack download needs tens of gigabytes of free space and a
good connection. If a download fails, its partial data is kept in
content/ as a .part file; run "Fetch content pack" again to restart it.
Finished files are skipped. Leftover .part files can be deleted.

If the server will not start, check server.log. Another program may
already be using port {port}; change "port" in {config_name}.

If the menu reports that kiwix-serve or kiwix-manage is missing, run the
installer again on a computer with internet access. Re-running the
installer refreshes the tools and leaves content/ untouched.

Layout: {root_name}/tools (server programs), {root_name}/content (your
.zim files), {root_name}/library.xml (rebuilt automatically, do not edit).
"""

WINDOWS_LAUNCHER = """\
@echo off
setlocal
set "ROOT=%~dp0"
set "PYTHONPATH=%ROOT%app;%PYTHONPATH%"
where py >nul 2>nul
if %errorlevel%==0 (
    py -3 -m kiwidrive.control --root "%ROOT%."
) else (
    python -m kiwidrive.control --root "%ROOT%."
)
if errorlevel 1 pause
endlocal
"""

POSIX_LAUNCHER = """\
#!/bin/sh
ROOT="$(cd "$(dirname "$0")" && pwd)"
PYTHONPATH="$ROOT/app${PYTHONPATH:+:$PYTHONPATH}"
export PYTHONPATH
exec python3 -m kiwidrive.control --root "$ROOT" "$@"
"""


def render_instructions(paths: DeploymentPaths, config: DriveConfig) -> str:
    return INSTRUCTIONS.format(
        port=config.port,
        root_name=paths.root.name,
        config_name=paths.config_file.name,
    )


def render_windows_launcher() -> str:
    return WINDOWS_LAUNCHER


def render_posix_launcher() -> str:
    return POSIX_LAUNCHER
