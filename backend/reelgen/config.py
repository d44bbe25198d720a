from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env.local")
load_dotenv(PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    app_name: str = "ReelGen Backend"
    app_env: str = "development"
    backend_port: int = Field(default=5000, alias="BACKEND_PORT")
    cors_allow_origins: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")

    media_root: str = Field(default=".", alias="MEDIA_ROOT")
    uploads_dir: str = Field(default="uploads", alias="UPLOADS_DIR")
    output_dir: str = Field(default="public/videos", alias="OUTPUT_DIR")
    temp_dir: str = Field(default="tmp", alias="TEMP_DIR")
    database_path: str = Field(default="data/reelgen.sqlite3", alias="DATABASE_PATH")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    ffmpeg_bin: str = Field(default="ffmpeg", alias="FFMPEG_BIN")
    ffprobe_bin: str = Field(default="ffprobe", alias="FFPROBE_BIN")

    elevenlabs_api_key: str = Field(default="", alias="ELEVENLABS_API_KEY")
    elevenlabs_api_url: str = Field(default="https://api.elevenlabs.io/v1", alias="ELEVENLABS_API_URL")
    elevenlabs_voice_id: str = Field(default="pNInz6obpgDQGcFmaJgB", alias="ELEVENLABS_VOICE_ID")
    elevenlabs_model_id: str = Field(default="eleven_multilingual_v2", alias="ELEVENLABS_MODEL_ID")
    voice_stability: float = Field(default=0.8, ge=0.0, le=1.0, alias="VOICE_STABILITY")
    voice_similarity_boost: float = Field(default=0.8, ge=0.0, le=1.0, alias="VOICE_SIMILARITY_BOOST")
    tts_timeout_seconds: float = Field(default=90.0, gt=0, alias="TTS_TIMEOUT_SECONDS")

    hook_category: str = Field(default="hooks", alias="HOOK_CATEGORY")
    hook_duration: float = Field(default=4.0, gt=0, alias="HOOK_DURATION")
    output_width: int = Field(default=1080, ge=16, alias="OUTPUT_WIDTH")
    output_height: int = Field(default=1920, ge=16, alias="OUTPUT_HEIGHT")

    # 0 disables the limit.
    max_concurrent_jobs: int = Field(default=2, ge=0, alias="MAX_CONCURRENT_JOBS")
    max_pending_jobs: int = Field(default=16, ge=0, alias="MAX_PENDING_JOBS")
    job_stall_timeout_seconds: float = Field(default=900.0, gt=0, alias="JOB_STALL_TIMEOUT_SECONDS")
    watchdog_interval_seconds: float = Field(default=30.0, gt=0, alias="WATCHDOG_INTERVAL_SECONDS")
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0, alias="HEARTBEAT_INTERVAL_SECONDS")
    # Compose may run this many times the output length before heartbeats stop.
    compose_realtime_factor: float = Field(default=4.0, gt=0, alias="COMPOSE_REALTIME_FACTOR")


settings = Settings()


def project_path(raw: str) -> Path:
    path = Path(raw)
    if path.is_absolute():
        return path
    return PROJECT_ROOT / path
