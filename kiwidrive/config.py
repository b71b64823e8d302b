"""Configuration for kiwidrive: loaded from kiwidrive.json plus env overrides."""

from __future__ import annotations

import json
import logging
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path

from kiwidrive.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "kiwidrive.json"

_KIWIX_TOOLS_BASE = "https://download.kiwix.org/release/kiwix-tools"

# (system, machine) -> release archive
_TOOLS_ARCHIVES = {
    ("Windows", "x86_64"): "kiwix-tools_win-i686.zip",
    ("Windows", "amd64"): "kiwix-tools_win-i686.zip",
    ("Linux", "x86_64"): "kiwix-tools_linux-x86_64.tar.gz",
    ("Linux", "aarch64"): "kiwix-tools_linux-aarch64.tar.gz",
    ("Linux", "armv7l"): "kiwix-tools_linux-armv6.tar.gz",
    ("Darwin", "x86_64"): "kiwix-tools_macos-x86_64.tar.gz",
    ("Darwin", "arm64"): "kiwix-tools_macos-arm64.tar.gz",
}

# Curated optional pack. Unversioned names redirect to the newest build.
DEFAULT_CONTENT_PACK: list[dict[str, str]] = [
    {
        "url": "https://download.kiwix.org/zim/wikipedia_en_all_nopic.zim",
        "filename": "wikipedia_en_all_nopic.zim",
    },
    {
        "url": "https://download.kiwix.org/zim/wiktionary_en_all_nopic.zim",
        "filename": "wiktionary_en_all_nopic.zim",
    },
    {
        "url": "https://download.kiwix.org/zim/wikivoyage_en_all_maxi.zim",
        "filename": "wikivoyage_en_all_maxi.zim",
    },
    {
        "url": "https://download.kiwix.org/zim/wikibooks_en_all_maxi.zim",
        "filename": "wikibooks_en_all_maxi.zim",
    },
    {
        "url": "https://download.kiwix.org/zim/ifixit_en_all.zim",
        "filename": "ifixit_en_all.zim",
    },
]


def default_tools_url(system: str | None = None, machine: str | None = None) -> str:
    """Return the kiwix-tools archive URL for this host (Windows build as fallback)."""
    system = system or platform.system()
    machine = (machine or platform.machine()).lower()
    name = _TOOLS_ARCHIVES.get((system, machine))
    if name is None:
        name = next(
            (v for (s, _), v in _TOOLS_ARCHIVES.items() if s == system),
            _TOOLS_ARCHIVES[("Windows", "x86_64")],
        )
    return f"{_KIWIX_TOOLS_BASE}/{name}"


@dataclass
class DriveConfig:
    """Deployment settings. Unknown keys in the JSON file are ignored."""

    deployment_dirname: str = "KiwixPortable"
    port: int = 8080
    bind_address: str = "0.0.0.0"
    tools_url: str = field(default_factory=default_tools_url)
    content_pack: list[dict[str, str]] = field(
        default_factory=lambda: [dict(item) for item in DEFAULT_CONTENT_PACK]
    )
    http_timeout: float = 60.0
    # Legacy behaviour: also kill every kiwix-serve on the host by name
    stop_by_name: bool = False
    confirm_token: str = "YES"

    @classmethod
    def load(cls, path: str | Path | None = None) -> DriveConfig:
        """Load from *path* (defaults if absent), then apply env overrides."""
        config = cls()
        if path is not None:
            path = Path(path)
            if path.exists():
                try:
                    with open(path, encoding="utf-8") as f:
                        data = json.load(f)
                except (OSError, ValueError) as exc:
                    raise ConfigError(path, exc) from exc
                if not isinstance(data, dict):
                    raise ConfigError(path, "expected a JSON object")
                known = {k for k in cls.__dataclass_fields__}
                filtered = {k: v for k, v in data.items() if k in known}
                config = cls(**filtered)
                problem = config.validate()
                if problem:
                    raise ConfigError(path, problem)
                config.port = _parse_port(config.port)
            else:
                logger.debug("Config not found at %s, using defaults", path)
        config.apply_env()
        return config

    def apply_env(self, environ: dict[str, str] | None = None) -> None:
        env = os.environ if environ is None else environ
        if env.get("KIWIDRIVE_PORT"):
            port = _parse_port(env["KIWIDRIVE_PORT"])
            if port is None:
                logger.warning("Ignoring KIWIDRIVE_PORT=%r: not a port number", env["KIWIDRIVE_PORT"])
            else:
                self.port = port
        if env.get("KIWIDRIVE_TOOLS_URL"):
            self.tools_url = env["KIWIDRIVE_TOOLS_URL"]
        if env.get("KIWIDRIVE_DIRNAME"):
            self.deployment_dirname = env["KIWIDRIVE_DIRNAME"]

    def validate(self) -> str | None:
        """Return a description of the first bad value, or None."""
        if _parse_port(self.port) is None:
            return f"port must be a number between 1 and 65535, got {self.port!r}"
        for name in ("deployment_dirname", "bind_address", "tools_url", "confirm_token"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                return f"{name} must be a non-empty string, got {value!r}"
        if isinstance(self.http_timeout, bool) or not isinstance(self.http_timeout, (int, float)) \
                or self.http_timeout <= 0:
            return f"http_timeout must be a positive number, got {self.http_timeout!r}"
        if not isinstance(self.content_pack, list) or not all(
            isinstance(e, dict) and isinstance(e.get("url"), str) and isinstance(e.get("filename"), str)
            for e in self.content_pack
        ):
            return "content_pack must be a list of {\"url\": ..., \"filename\": ...} entries"
        return None

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, indent=2)


def _parse_port(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        port = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != port:
        return None
    return port if 0 < port < 65536 else None
