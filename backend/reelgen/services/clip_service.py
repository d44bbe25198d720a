from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import HookResolutionFailure, InsufficientClips, NoClipsAvailable
from ..models import VideoClip
from ..state import ClipRepository


logger = logging.getLogger(__name__)


@dataclass
class ClipSelection:
    hook: Path | None
    main: list[Path] = field(default_factory=list)
    required_count: int = 0

    @property
    def segment_count(self) -> int:
        return len(self.main) + (1 if self.hook else 0)


def required_clip_count(
    total_length: float,
    clip_duration: float,
    hook_resolved: bool,
    hook_duration: float,
) -> int:
    if clip_duration <= 0:
        raise ValueError("clip_duration must be positive")
    remaining = total_length - hook_duration if hook_resolved and hook_duration < total_length else total_length
    # Round before ceil so 61 / 5.0 style float noise does not add a clip.
    return max(1, math.ceil(round(remaining / clip_duration, 9)))


def resolve_clip_path(url: str, media_root: Path) -> Path:
    """Map a catalog locator such as ``/uploads/x.mp4`` onto the media root."""
    relative = str(url or "").strip().lstrip("/\\")
    return media_root / relative


def _existing_clip_paths(clips: list[VideoClip], media_root: Path, label: str) -> list[Path]:
    valid: list[Path] = []
    for clip in clips:
        path = resolve_clip_path(clip.url, media_root)
        if path.is_file():
            valid.append(path)
        else:
            logger.info("Clip not found for %s: %s", label, path)
    return valid


def resolve_hook_clip(catalog: ClipRepository, media_root: Path, hook_category: str = "hooks") -> Path:
    hook_clips = catalog.list_by_category(hook_category)
    logger.info("Found %s hook clip(s) in catalog", len(hook_clips))
    for clip in hook_clips:
        path = resolve_clip_path(clip.url, media_root)
        if path.is_file():
            logger.info("Selected hook clip: %s (%s)", clip.name, clip.url)
            return path
        logger.info("Hook clip file not found: %s", path)
    raise HookResolutionFailure(hook_category, len(hook_clips))


def collect_clip_pool(catalog: ClipRepository, categories: list[str], media_root: Path) -> list[Path]:
    pool: list[Path] = []
    seen: set[Path] = set()
    for category in categories:
        clips = catalog.list_by_category(category)
        valid = _existing_clip_paths(clips, media_root, category)
        logger.info("Category %s: %s catalog entries, %s on disk", category, len(clips), len(valid))
        if not valid:
            raise NoClipsAvailable(category)
        for path in valid:
            if path not in seen:
                seen.add(path)
                pool.append(path)
    return pool


def pick_main_clips(pool: list[Path], required: int, rng: random.Random | None = None) -> list[Path]:
    if len(pool) < required:
        raise InsufficientClips(required, len(pool))
    shuffled = list(pool)
    (rng or random).shuffle(shuffled)
    return shuffled[:required]


def select_clips(
    catalog: ClipRepository,
    categories: list[str],
    total_length: float,
    clip_duration: float,
    use_hook: bool,
    media_root: Path,
    hook_duration: float = 4.0,
    hook_category: str = "hooks",
    rng: random.Random | None = None,
    on_stage=None,
) -> ClipSelection:
    """Choose the hook and the randomized main clips for one job.

    ``on_stage`` is called with ``"hook_lookup"`` and ``"main_clips"`` as each
    step begins so the caller can report progress.
    """
    hook: Path | None = None
    if use_hook:
        if on_stage:
            on_stage("hook_lookup")
        hook = resolve_hook_clip(catalog, media_root, hook_category)

    if on_stage:
        on_stage("main_clips")
    pool = collect_clip_pool(catalog, categories, media_root)
    required = required_clip_count(total_length, clip_duration, hook is not None, hook_duration)
    main = pick_main_clips(pool, required, rng)
    logger.info(
        "Selected %s main clip(s) from a pool of %s (hook=%s)",
        len(main),
        len(pool),
        hook.name if hook else "none",
    )
    return ClipSelection(hook=hook, main=main, required_count=required)
