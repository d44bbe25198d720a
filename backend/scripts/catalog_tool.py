from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from reelgen.config import project_path, settings
from reelgen.logging_setup import setup_logging
from reelgen.services.catalog_service import prune_missing, register_untracked
from reelgen.services.media_service import MediaToolkit
from reelgen.state import ClipCatalog


logger = logging.getLogger("catalog_tool")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Maintain the clip catalog used for video generation.")
    parser.add_argument("--database", default=settings.database_path, help="sqlite database path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="register untracked files from the uploads directory")
    register.add_argument("--category", required=True, help="category tag for the new clips, e.g. hooks")
    register.add_argument("--dir", default=settings.uploads_dir, help="directory to scan")

    subparsers.add_parser("prune", help="remove catalog entries whose file is missing")
    return parser


async def run(args: argparse.Namespace) -> int:
    catalog = ClipCatalog(db_path=project_path(args.database))
    media_root = project_path(settings.media_root)

    if args.command == "register":
        uploads_dir = project_path(args.dir)
        if not uploads_dir.is_dir():
            logger.error("Uploads directory not found: %s", uploads_dir)
            return 1
        media = MediaToolkit(settings.ffmpeg_bin, settings.ffprobe_bin)
        report = await register_untracked(catalog, media, uploads_dir, media_root, args.category.strip())
        print(f"added={len(report.added)} skipped={len(report.skipped)} failed={len(report.failed)}")
        return 1 if report.failed else 0

    removed = prune_missing(catalog, media_root)
    print(f"removed={len(removed)}")
    return 0


def main() -> None:
    setup_logging("catalog_tool.log")
    args = build_arg_parser().parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
