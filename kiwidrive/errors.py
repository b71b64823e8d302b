"""Exception hierarchy shared by the installer and the control menu."""

from __future__ import annotations

from pathlib import Path


class KiwidriveError(Exception):
    """Base error for every failure reported to the operator."""


class UserCancelled(KiwidriveError):
    """Raised when the operator declines a confirmation gate."""


class ConfigError(KiwidriveError):
    """Raised when kiwidrive.json cannot be read or holds an invalid value."""

    def __init__(self, path: Path, reason: object) -> None:
        self.path = path
        super().__init__(
            f"Settings file {path} is not valid: {reason}. "
            "Fix it (or delete it to use the defaults) and try again."
        )


class ExternalToolMissing(KiwidriveError):
    """Raised when kiwix-serve / kiwix-manage is absent from tools/."""

    def __init__(self, tool: Path) -> None:
        self.tool = tool
        super().__init__(
            f"{tool.name} not found in {tool.parent}. "
            "Re-run the installer (python -m kiwidrive.install) to restore the tools."
        )


# ── Staging ───────────────────────────────────────────────────────


class StagingError(KiwidriveError):
    """Base error for a failed staging run. Re-running staging is the remedy."""


class NoEligibleVolume(StagingError):
    """No removable or USB volume is mounted."""


class StagingCancelled(StagingError, UserCancelled):
    """Staging was not confirmed; nothing was written."""


class NetworkFetchFailed(StagingError):
    """The tool archive could not be downloaded."""


class ArchiveExtractFailed(StagingError):
    """The tool archive is corrupt or in an unsupported format."""


class FilesystemWriteFailed(StagingError):
    """Writing to the target volume failed."""

    def __init__(self, path: Path, reason: object = "") -> None:
        self.path = path
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot write {path}{detail}")
