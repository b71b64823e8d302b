"""pytest configuration for kiwidrive tests."""

from __future__ import annotations

import io
import zipfile

import pytest

from kiwidrive.config import DriveConfig
from kiwidrive.deployment import DeploymentPaths


def make_tools_zip(version: str = "3.7.0", payload: bytes = b"binary") -> bytes:
    """A kiwix-tools style release zip with a wrapping top-level folder."""
    buf = io.BytesIO()
    top = f"kiwix-tools_test-{version}"
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{top}/kiwix-serve", payload + b" serve " + version.encode())
        zf.writestr(f"{top}/kiwix-manage", payload + b" manage " + version.encode())
        zf.writestr(f"{top}/README", f"kiwix-tools {version}")
    return buf.getvalue()


@pytest.fixture
def config():
    return DriveConfig(tools_url="https://download.example.org/kiwix-tools_test.zip")


@pytest.fixture
def deployment(tmp_path):
    """A staged deployment with placeholder tools and an empty content folder."""
    paths = DeploymentPaths(tmp_path / "KiwixPortable")
    paths.tools_dir.mkdir(parents=True)
    paths.content_dir.mkdir()
    paths.server_exe.write_bytes(b"serve")
    paths.manage_exe.write_bytes(b"manage")
    return paths


@pytest.fixture
def tools_zip():
    return make_tools_zip
