from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Settings, project_path, settings as default_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that are too chatty at INFO: httpx logs each voiceover request,
# uvicorn.access each status poll.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _owned_handler(root_logger: logging.Logger, log_file: Path) -> RotatingFileHandler | None:
    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_file:
            return handler
    return None


def setup_logging(log_name: str = "backend.log", settings: Settings | None = None) -> Path:
    """Attach stream and rotating file handlers to the root logger.

    The server writes ``backend.log``; maintenance scripts pass their own
    ``log_name``. Calling again for the same file is a no-op.
    """
    settings = settings or default_settings
    log_file = (project_path(settings.log_dir) / log_name).resolve()
    root_logger = logging.getLogger()
    if _owned_handler(root_logger, log_file) is not None:
        return log_file

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if not any(type(handler) is logging.StreamHandler for handler in root_logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_file
