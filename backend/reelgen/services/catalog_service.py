from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..models import VideoClip
from ..state import ClipCatalog
from .clip_service import resolve_clip_path
from .media_service import MediaToolkit


logger = logging.getLogger(__name__)

VIDEO_SUFFIXES = {".mp4", ".mov", ".m4v", ".webm", ".mkv"}


@dataclass
class RegisterReport:
    added: list[VideoClip] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def format_duration(seconds: float) -> str:
    return f"{max(float(seconds), 0.0):.2f}s"


def _locator(path: Path, media_root: Path) -> str:
    try:
        return "/" + path.resolve().relative_to(media_root.resolve()).as_posix()
    except ValueError:
        return path.resolve().as_posix()


async def register_untracked(
    catalog: ClipCatalog,
    media: MediaToolkit,
    uploads_dir: Path,
    media_root: Path,
    category: str,
) -> RegisterReport:
    """Add every video in ``uploads_dir`` that the catalog does not know yet."""
    report = RegisterReport()
    known = {resolve_clip_path(clip.url, media_root).resolve() for clip in catalog.list_all()}

    for path in sorted(uploads_dir.iterdir()):
        if not path.is_file() or path.suffix.lower() not in VIDEO_SUFFIXES:
            continue
        if path.resolve() in known:
            report.skipped.append(path.name)
            continue
        try:
            duration = await media.probe_duration(path)
        except ValueError as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
            report.failed[path.name] = str(exc)
            continue
        clip = catalog.add(
            name=path.name,
            category=category,
            url=_locator(path, media_root),
            duration=format_duration(duration),
        )
        logger.info("Registered clip %s as %s (%s)", clip.name, category, clip.duration)
        report.added.append(clip)
    return report


def prune_missing(catalog: ClipCatalog, media_root: Path) -> list[VideoClip]:
    """Drop catalog entries whose backing file is gone."""
    removed: list[VideoClip] = []
    for clip in catalog.list_all():
        path = resolve_clip_path(clip.url, media_root)
        if path.is_file():
            continue
        if catalog.remove(clip.id):
            logger.info("Removed clip %s (%s): file missing", clip.name, clip.url)
            removed.append(clip)
    return removed
