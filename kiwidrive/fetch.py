"""Blocking HTTP download to a file.

Uses httpx for the transfer. Bytes go to ``<dest>.part`` and the file is
renamed to *dest* only once the body is complete, so *dest* never holds a
truncated download. No resume support: a failed download leaves the
``.part`` file in place and the next attempt starts it over.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import httpx

from kiwidrive.errors import KiwidriveError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, "int | None"], None]


class FetchError(KiwidriveError):
    """Raised when a URL cannot be fetched to its destination file."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Download of {url} failed: {reason}")


def download(
    url: str,
    dest: Path,
    *,
    client: httpx.Client | None = None,
    timeout: float = 60.0,
    progress: ProgressCallback | None = None,
) -> int:
    """Stream *url* into *dest* and return the number of bytes written.

    Raises :class:`FetchError` on network errors, non-2xx responses and
    local write errors.
    """
    if client is None:
        with httpx.Client(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 30.0)),
            follow_redirects=True,
        ) as own_client:
            return _download(own_client, url, dest, progress)
    return _download(client, url, dest, progress)


def _download(
    client: httpx.Client,
    url: str,
    dest: Path,
    progress: ProgressCallback | None,
) -> int:
    written = 0
    part = partial_path(dest)
    try:
        with client.stream("GET", url) as response:
            if not response.is_success:
                raise FetchError(url, f"HTTP {response.status_code}")
            total = _content_length(response)
            logger.info("Downloading %s (%s bytes) -> %s", url, total or "?", dest)
            with open(part, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
                    written += len(chunk)
                    if progress is not None:
                        progress(written, total)
        part.replace(dest)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FetchError(url, str(exc) or type(exc).__name__) from exc
    except OSError as exc:
        raise FetchError(url, f"cannot write {dest}: {exc}") from exc
    logger.info("Downloaded %s (%d bytes)", dest.name, written)
    return written


def partial_path(dest: Path) -> Path:
    """Where an unfinished download of *dest* is kept."""
    return dest.with_name(dest.name + ".part")


def _content_length(response: httpx.Response) -> int | None:
    try:
        return int(response.headers["content-length"])
    except (KeyError, ValueError):
        return None
