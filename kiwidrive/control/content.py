"""Optional content pack download.

Fetches each curated (url, filename) pair into content/, one after the
other. A failed item is reported and its partial download kept as
``<filename>.part``; the remaining items are still attempted. Only finished
files carry the final name, so items whose file already exists are skipped
and a re-run fetches the missing ones again from the start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import httpx

from kiwidrive.deployment import DeploymentPaths
from kiwidrive.errors import UserCancelled
from kiwidrive.fetch import FetchError, ProgressCallback, download, partial_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentItem:
    url: str
    filename: str

    def __post_init__(self) -> None:
        if not self.filename or Path(self.filename).name != self.filename:
            raise ValueError(f"Content pack filename must be a plain file name: {self.filename!r}")

    @classmethod
    def from_config(cls, entries: Iterable[dict[str, str]]) -> list[ContentItem]:
        return [cls(url=e["url"], filename=e["filename"]) for e in entries]


@dataclass
class ItemResult:
    item: ContentItem
    status: str  # "done", "failed", "skipped"
    detail: str = ""
    bytes_written: int = 0


@dataclass
class PackReport:
    results: list[ItemResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def has_failures(self) -> bool:
        return self.count("failed") > 0

    def summary(self) -> str:
        outcome = "completed with failures" if self.has_failures else "completed"
        return (
            f"{outcome}: {self.count('done')} downloaded, "
            f"{self.count('skipped')} already present, {self.count('failed')} failed"
        )


def fetch_content_pack(
    paths: DeploymentPaths,
    items: list[ContentItem],
    confirmed: bool,
    *,
    client: httpx.Client | None = None,
    timeout: float = 60.0,
    on_item: Callable[[ItemResult], None] | None = None,
    progress: Callable[[ContentItem], ProgressCallback | None] | None = None,
) -> PackReport:
    """Download every item of the pack. Never stops early on a failed item."""
    if not confirmed:
        raise UserCancelled("Content pack download was not confirmed")

    paths.content_dir.mkdir(parents=True, exist_ok=True)
    report = PackReport()
    for index, item in enumerate(items, 1):
        dest = paths.content_dir / item.filename
        if dest.exists():
            result = ItemResult(item, "skipped", f"{item.filename} already present")
        else:
            logger.info("Fetching pack item %d/%d: %s", index, len(items), item.url)
            try:
                written = download(
                    item.url, dest,
                    client=client,
                    timeout=timeout,
                    progress=progress(item) if progress else None,
                )
                result = ItemResult(item, "done", bytes_written=written)
            except FetchError as exc:
                logger.warning("Pack item %s failed: %s", item.filename, exc.reason)
                detail = exc.reason
                part = partial_path(dest)
                if part.exists():
                    detail += f" (partial data kept as {part.name})"
                result = ItemResult(item, "failed", detail)
        report.results.append(result)
        if on_item is not None:
            on_item(result)
    logger.info("Content pack %s", report.summary())
    return report
