from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Protocol
from uuid import uuid4

from .config import project_path, settings
from .models import GenerateVideoRequest, GenerationJob, VideoClip


logger = logging.getLogger(__name__)

_UPDATABLE_JOB_FIELDS = ("status", "progress", "error", "output_url")


def _now_iso(offset_seconds: float = 0.0) -> str:
    moment = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
    return moment.isoformat(timespec="microseconds")


class JobRepository(Protocol):
    def create(self, request: GenerateVideoRequest) -> str: ...

    def get(self, job_id: str) -> GenerationJob | None: ...

    def update(self, job_id: str, *, only_if_status: Iterable[str] | None = None, **fields: object) -> bool: ...

    def list_by_status(self, statuses: Iterable[str]) -> list[GenerationJob]: ...

    def list_stalled(self, older_than_seconds: float) -> list[GenerationJob]: ...


class ClipRepository(Protocol):
    def list_by_category(self, category: str) -> list[VideoClip]: ...

    def list_all(self) -> list[VideoClip]: ...


@dataclass
class _SqliteStore(ABC):
    db_path: Path = field(default_factory=lambda: project_path(settings.database_path))
    lock: Lock = field(default_factory=Lock)

    def __post_init__(self) -> None:
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @abstractmethod
    def _init_db(self) -> None:
        """Create the tables this store owns."""


@dataclass
class JobStore(_SqliteStore):
    def _init_db(self) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS jobs (
                        id TEXT PRIMARY KEY,
                        categories_json TEXT NOT NULL,
                        script TEXT NOT NULL,
                        use_hook INTEGER NOT NULL DEFAULT 0,
                        total_length REAL NOT NULL,
                        clip_duration REAL NOT NULL,
                        status TEXT NOT NULL,
                        progress INTEGER NOT NULL DEFAULT 0,
                        output_url TEXT,
                        error TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
                conn.commit()

    def _row_to_job(self, row: sqlite3.Row) -> GenerationJob:
        categories: list[str] = []
        try:
            parsed = json.loads(str(row["categories_json"] or "[]"))
            if isinstance(parsed, list):
                categories = [str(item) for item in parsed]
        except json.JSONDecodeError:
            logger.warning("Corrupt categories on job %s", row["id"])
        return GenerationJob(
            id=str(row["id"]),
            categories=categories,
            script=str(row["script"] or ""),
            use_hook=bool(row["use_hook"]),
            total_length=float(row["total_length"]),
            clip_duration=float(row["clip_duration"]),
            status=str(row["status"]),
            progress=max(0, min(100, int(row["progress"] or 0))),
            output_url=str(row["output_url"]) if row["output_url"] else None,
            error=str(row["error"]) if row["error"] else None,
            created_at=str(row["created_at"]) if row["created_at"] else None,
            updated_at=str(row["updated_at"]) if row["updated_at"] else None,
        )

    def create(self, request: GenerateVideoRequest) -> str:
        job_id = uuid4().hex
        with self.lock:
            now = _now_iso()
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO jobs (
                        id, categories_json, script, use_hook, total_length, clip_duration,
                        status, progress, output_url, error, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 'pending', 0, NULL, NULL, ?, ?)
                    """,
                    (
                        job_id,
                        json.dumps(request.categories, ensure_ascii=False),
                        request.script,
                        int(bool(request.use_hook)),
                        float(request.total_length),
                        float(request.clip_duration),
                        now,
                        now,
                    ),
                )
                conn.commit()
        return job_id

    def get(self, job_id: str) -> GenerationJob | None:
        with self.lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            return None
        return self._row_to_job(row)

    def update(self, job_id: str, *, only_if_status: Iterable[str] | None = None, **fields: object) -> bool:
        """Apply a partial update; returns False when no row matched.

        ``only_if_status`` restricts the write to rows currently in one of the
        given states, which keeps terminal records immutable.
        """
        unknown = set(fields) - set(_UPDATABLE_JOB_FIELDS)
        if unknown:
            raise ValueError(f"unsupported job fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = [f"{name} = ?" for name in fields]
        params: list[object] = list(fields.values())
        assignments.append("updated_at = ?")
        params.append(_now_iso())

        query = f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?"
        params.append(job_id)
        if only_if_status is not None:
            allowed = list(only_if_status)
            placeholders = ", ".join("?" for _ in allowed)
            query += f" AND status IN ({placeholders})"
            params.extend(allowed)

        with self.lock:
            with self._connect() as conn:
                cursor = conn.execute(query, params)
                conn.commit()
                return cursor.rowcount > 0

    def list_by_status(self, statuses: Iterable[str]) -> list[GenerationJob]:
        wanted = list(statuses)
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM jobs WHERE status IN ({placeholders}) ORDER BY created_at ASC",
                    wanted,
                ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_stalled(self, older_than_seconds: float) -> list[GenerationJob]:
        cutoff = _now_iso(-float(older_than_seconds))
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM jobs
                    WHERE status = 'processing' AND updated_at < ?
                    ORDER BY updated_at ASC
                    """,
                    (cutoff,),
                ).fetchall()
        return [self._row_to_job(row) for row in rows]


@dataclass
class ClipCatalog(_SqliteStore):
    def _init_db(self) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS video_clips (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        category TEXT NOT NULL,
                        url TEXT NOT NULL,
                        duration TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_video_clips_category ON video_clips(category)")
                conn.commit()

    def _row_to_clip(self, row: sqlite3.Row) -> VideoClip:
        return VideoClip(
            id=int(row["id"]),
            name=str(row["name"]),
            category=str(row["category"]),
            url=str(row["url"]),
            duration=str(row["duration"]),
            created_at=str(row["created_at"]) if row["created_at"] else None,
        )

    def add(self, name: str, category: str, url: str, duration: str) -> VideoClip:
        with self.lock:
            now = _now_iso()
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO video_clips (name, category, url, duration, created_at) VALUES (?, ?, ?, ?, ?)",
                    (name, category, url, duration, now),
                )
                conn.commit()
                clip_id = int(cursor.lastrowid)
        return VideoClip(id=clip_id, name=name, category=category, url=url, duration=duration, created_at=now)

    def list_by_category(self, category: str) -> list[VideoClip]:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM video_clips WHERE category = ? ORDER BY created_at DESC, id DESC",
                    (category,),
                ).fetchall()
        return [self._row_to_clip(row) for row in rows]

    def list_all(self) -> list[VideoClip]:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM video_clips ORDER BY created_at DESC, id DESC").fetchall()
        return [self._row_to_clip(row) for row in rows]

    def remove(self, clip_id: int) -> bool:
        with self.lock:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM video_clips WHERE id = ?", (clip_id,))
                conn.commit()
                return cursor.rowcount > 0
