"""Tests for kiwix-serve start/stop with Popen and psutil mocked."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import psutil
import pytest

from kiwidrive.config import DriveConfig
from kiwidrive.control.library import EMPTY_LIBRARY, LibraryManager
from kiwidrive.control.server import ServerAccessDenied, ServerController
from kiwidrive.errors import ExternalToolMissing


def _ok_runner(cmd, **kwargs):
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def _proc(pid: int, name: str) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.name.return_value = name
    proc.is_running.return_value = True
    proc.info = {"name": name}
    return proc


@pytest.fixture
def popen():
    mock = MagicMock()
    mock.return_value.pid = 4321
    return mock


def _controller(deployment, popen, config=None, lan_ip=None):
    return ServerController(
        deployment,
        config or DriveConfig(),
        library=LibraryManager(deployment, runner=_ok_runner),
        popen=popen,
        lan_ip=lambda: lan_ip,
    )


class TestStart:
    def test_start_builds_library_and_records_pid(self, deployment, popen):
        server = _controller(deployment, popen)

        result = server.start()

        assert result.pid == 4321
        assert result.rebuild is not None
        assert result.rebuild.summary() == "0 succeeded, 0 failed"
        assert deployment.library_file.read_text() == EMPTY_LIBRARY
        assert deployment.pid_file.read_text().strip() == "4321"
        assert deployment.server_log.exists()

    def test_command_and_detach(self, deployment, popen):
        server = _controller(deployment, popen, config=DriveConfig(port=8181))
        server.start()

        cmd = popen.call_args[0][0]
        assert cmd[0] == str(deployment.server_exe)
        assert "--library" in cmd
        assert cmd[cmd.index("--port") + 1] == "8181"
        assert cmd[-1] == str(deployment.library_file)
        kwargs = popen.call_args[1]
        assert kwargs["stdin"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.STDOUT
        assert kwargs.get("start_new_session") or kwargs.get("creationflags")

    def test_existing_library_not_rebuilt(self, deployment, popen):
        deployment.library_file.write_text("<library/>")
        result = _controller(deployment, popen).start()
        assert result.rebuild is None
        assert deployment.library_file.read_text() == "<library/>"

    def test_urls_loopback_always(self, deployment, popen):
        result = _controller(deployment, popen, lan_ip=None).start()
        assert result.urls == ["http://localhost:8080"]

    def test_urls_with_lan(self, deployment, popen):
        result = _controller(deployment, popen, lan_ip="192.168.1.20").start()
        assert result.urls == ["http://localhost:8080", "http://192.168.1.20:8080"]

    def test_missing_server_binary(self, deployment, popen):
        deployment.server_exe.unlink()
        with pytest.raises(ExternalToolMissing, match="kiwix-serve"):
            _controller(deployment, popen).start()
        popen.assert_not_called()

    def test_already_running(self, deployment, popen):
        deployment.pid_file.write_text("777")
        running = _proc(777, deployment.server_exe.name)
        with patch("kiwidrive.control.server.psutil.Process", return_value=running):
            result = _controller(deployment, popen).start()
        assert result.already_running
        assert result.pid == 777
        popen.assert_not_called()


class TestStop:
    def test_stop_recorded_process(self, deployment, popen):
        deployment.pid_file.write_text("777\n")
        running = _proc(777, deployment.server_exe.name)
        with patch("kiwidrive.control.server.psutil.Process", return_value=running), \
             patch("kiwidrive.control.server.psutil.wait_procs", return_value=([running], [])):
            stopped = _controller(deployment, popen).stop()

        assert stopped == 1
        running.terminate.assert_called_once()
        running.kill.assert_not_called()
        assert not deployment.pid_file.exists()

    def test_stop_kills_after_timeout(self, deployment, popen):
        deployment.pid_file.write_text("777")
        stubborn = _proc(777, deployment.server_exe.name)
        with patch("kiwidrive.control.server.psutil.Process", return_value=stubborn), \
             patch("kiwidrive.control.server.psutil.wait_procs", return_value=([], [stubborn])):
            stopped = _controller(deployment, popen).stop()
        assert stopped == 1
        stubborn.kill.assert_called_once()

    def test_stop_when_not_running_is_fine(self, deployment, popen):
        assert _controller(deployment, popen).stop() == 0

    def test_stale_pid_of_other_program_is_left_alone(self, deployment, popen):
        deployment.pid_file.write_text("999")
        other = _proc(999, "firefox")
        with patch("kiwidrive.control.server.psutil.Process", return_value=other):
            stopped = _controller(deployment, popen).stop()
        assert stopped == 0
        other.terminate.assert_not_called()
        assert not deployment.pid_file.exists()

    def test_dead_pid(self, deployment, popen):
        deployment.pid_file.write_text("999")
        with patch("kiwidrive.control.server.psutil.Process",
                   side_effect=psutil.NoSuchProcess(999)):
            assert _controller(deployment, popen).stop() == 0

    def test_access_denied_keeps_pid_file(self, deployment, popen):
        deployment.pid_file.write_text("888")
        with patch("kiwidrive.control.server.psutil.Process",
                   side_effect=psutil.AccessDenied(888)):
            server = _controller(deployment, popen)
            with pytest.raises(ServerAccessDenied, match="888"):
                server.stop()
            assert server.is_running()
        assert deployment.pid_file.read_text() == "888"

    def test_refused_terminate_keeps_pid_file(self, deployment, popen):
        deployment.pid_file.write_text("777")
        guarded = _proc(777, deployment.server_exe.name)
        guarded.terminate.side_effect = psutil.AccessDenied(777)
        with patch("kiwidrive.control.server.psutil.Process", return_value=guarded), \
             patch("kiwidrive.control.server.psutil.wait_procs", return_value=([], [])):
            with pytest.raises(ServerAccessDenied):
                _controller(deployment, popen).stop()
        assert deployment.pid_file.exists()

    def test_stop_by_name_is_opt_in(self, deployment, popen):
        stray = _proc(555, deployment.server_exe.name)
        unrelated = _proc(556, "python")
        with patch("kiwidrive.control.server.psutil.process_iter",
                   return_value=[stray, unrelated]) as iter_mock, \
             patch("kiwidrive.control.server.psutil.wait_procs",
                   side_effect=lambda procs, timeout: (procs, [])):
            assert _controller(deployment, popen).stop() == 0
            iter_mock.assert_not_called()

            config = DriveConfig(stop_by_name=True)
            assert _controller(deployment, popen, config=config).stop() == 1

        stray.terminate.assert_called_once()
        unrelated.terminate.assert_not_called()


class TestRecordedPid:
    def test_garbage_pid_file(self, deployment, popen):
        deployment.pid_file.write_text("not a pid")
        server = _controller(deployment, popen)
        assert server.recorded_pid() is None
        assert server.is_running() is False
