"""Tests for deployment staging: layout, idempotence, failure paths."""

from __future__ import annotations

import io
import tarfile
import tempfile
from pathlib import Path

import httpx
import pytest

from kiwidrive.config import DriveConfig
from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import (
    ArchiveExtractFailed,
    NetworkFetchFailed,
    StagingCancelled,
    StagingError,
    UserCancelled,
)
from kiwidrive.install.staging import StagingEngine, stage
from kiwidrive.install.volumes import Volume


def _client(body: bytes, status: int = 200, calls: list | None = None) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(status, content=body)
    return httpx.Client(transport=httpx.MockTransport(handler))


def volume_path(volume: Volume) -> Path:
    return Path(volume.identifier)


def _snapshot(root):
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*")) if p.is_file()
    }


def _tools_tar() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name in ("kiwix-serve", "kiwix-manage"):
            data = name.encode()
            info = tarfile.TarInfo(f"kiwix-tools_linux-x86_64-3.7.0/{name}")
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def volume(tmp_path):
    mount = tmp_path / "usb"
    mount.mkdir()
    return Volume(identifier=str(mount), label="USB", removable=True)


@pytest.fixture(autouse=True)
def _private_tempdir(tmp_path, monkeypatch):
    """Route tempfile into a per-test folder so cleanup can be checked."""
    tmp = tmp_path / "tmp"
    tmp.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(tmp))
    return tmp


class TestStageLayout:
    def test_creates_deployment(self, volume, config, tools_zip):
        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip()))

        assert paths.root == DeploymentPaths.for_volume(volume.identifier, "KiwixPortable").root
        assert paths.content_dir.is_dir()
        assert list(paths.content_dir.iterdir()) == []
        assert (paths.tools_dir / "kiwix-serve").read_bytes().endswith(b"serve 3.7.0")
        assert (paths.tools_dir / "kiwix-manage").is_file()
        assert paths.instructions_file.is_file()
        assert "port 8080" in paths.instructions_file.read_text(encoding="utf-8")
        assert paths.windows_launcher.is_file()
        assert b"\r\n" in paths.windows_launcher.read_bytes()
        assert paths.posix_launcher.read_text(encoding="utf-8").startswith("#!/bin/sh")
        assert (paths.app_dir / "kiwidrive" / "control" / "menu.py").is_file()
        assert not list(paths.app_dir.rglob("__pycache__"))
        assert paths.config_file.is_file()
        assert not paths.library_file.exists()

    def test_wrapping_folder_is_flattened(self, volume, config, tools_zip):
        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip()))
        assert not any(p.name.startswith("kiwix-tools_") for p in paths.tools_dir.iterdir())

    def test_tar_archive(self, volume):
        config = DriveConfig(tools_url="https://download.example.org/kiwix-tools_linux-x86_64.tar.gz")

        paths = stage(volume, confirmed=True, config=config, client=_client(_tools_tar()))

        assert (paths.tools_dir / "kiwix-serve").read_bytes() == b"kiwix-serve"

    def test_url_without_extension_is_sniffed(self, volume, tools_zip):
        config = DriveConfig(tools_url="https://mirror.example.org/kiwix-tools/latest")

        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip()))

        assert (paths.tools_dir / "kiwix-serve").read_bytes().endswith(b"serve 3.7.0")

    def test_url_with_query_string(self, volume):
        config = DriveConfig(tools_url="https://mirror.example.org/get?file=kiwix-tools&arch=x86_64")

        paths = stage(volume, confirmed=True, config=config, client=_client(_tools_tar()))

        assert (paths.tools_dir / "kiwix-manage").read_bytes() == b"kiwix-manage"

    def test_progress_callbacks(self, volume, config, tools_zip):
        seen = []
        engine = StagingEngine(config, client=_client(tools_zip()))
        engine.on_progress(lambda step: seen.append((step.name, step.status)))
        result = engine.stage(volume, confirmed=True)

        assert result.success
        assert ("download", "done") in seen
        assert all(step.status == "done" for step in result.steps)


class TestStageSafety:
    def test_unconfirmed_writes_nothing(self, volume, config, tools_zip):
        calls: list[str] = []
        with pytest.raises(StagingCancelled) as exc_info:
            stage(volume, confirmed=False, config=config, client=_client(tools_zip(), calls=calls))
        assert isinstance(exc_info.value, UserCancelled)
        assert isinstance(exc_info.value, StagingError)
        assert calls == []
        assert list(volume_path(volume).iterdir()) == []

    def test_unrelated_files_untouched(self, volume, config, tools_zip):
        mount = volume_path(volume)
        (mount / "photos").mkdir()
        (mount / "photos" / "cat.jpg").write_bytes(b"\xff\xd8cat")
        (mount / "notes.txt").write_text("keep me")
        before = _snapshot(mount)

        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip()))

        after = _snapshot(mount)
        for name, data in before.items():
            assert after[name] == data
        outside = {n for n in after if not n.startswith(paths.root.name)}
        assert outside == set(before)

    def test_rerun_keeps_content_and_refreshes_tools(self, volume, config, tools_zip):
        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip("3.6.0")))
        (paths.content_dir / "wikipedia.zim").write_bytes(b"ZIM" * 100)
        (paths.content_dir / "notes.txt").write_text("operator file")
        paths.library_file.write_text("<library/>")
        paths.config_file.write_text('{"port": 9090}')
        content_before = _snapshot(paths.content_dir)

        stage(volume, confirmed=True, config=config, client=_client(tools_zip("3.7.0")))

        assert _snapshot(paths.content_dir) == content_before
        assert paths.library_file.read_text() == "<library/>"
        assert paths.config_file.read_text() == '{"port": 9090}'
        assert (paths.tools_dir / "kiwix-serve").read_bytes().endswith(b"3.7.0")


class TestStageFailures:
    def test_http_error_leaves_tools_alone(self, volume, config, tools_zip, _private_tempdir):
        paths = stage(volume, confirmed=True, config=config, client=_client(tools_zip("3.6.0")))
        tools_before = _snapshot(paths.tools_dir)

        with pytest.raises(NetworkFetchFailed):
            stage(volume, confirmed=True, config=config, client=_client(b"gone", status=404))

        assert _snapshot(paths.tools_dir) == tools_before
        assert list(_private_tempdir.iterdir()) == []

    def test_connection_error(self, volume, config):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)
        client = httpx.Client(transport=httpx.MockTransport(handler))

        engine = StagingEngine(config, client=client)
        result = engine.stage(volume, confirmed=True)

        assert not result.success
        assert isinstance(result.error, NetworkFetchFailed)
        statuses = {s.name: s.status for s in result.steps}
        assert statuses["prepare"] == "done"
        assert statuses["download"] == "failed"
        assert statuses["extract"] == "skipped"

    def test_corrupt_archive_cleans_temp(self, volume, config, _private_tempdir):
        with pytest.raises(ArchiveExtractFailed):
            stage(volume, confirmed=True, config=config, client=_client(b"not a zip"))
        assert list(_private_tempdir.iterdir()) == []
        paths = DeploymentPaths.for_volume(volume.identifier, config.deployment_dirname)
        assert list(paths.tools_dir.iterdir()) == []

    def test_unsupported_format(self, volume):
        config = DriveConfig(tools_url="https://download.example.org/kiwix-tools.rar")
        with pytest.raises(ArchiveExtractFailed):
            stage(volume, confirmed=True, config=config, client=_client(b"rar"))
