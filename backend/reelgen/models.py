from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


JobStatusName = Literal["pending", "processing", "completed", "failed"]
ACTIVE_STATUSES: tuple[str, ...] = ("pending", "processing")
TERMINAL_STATUSES: tuple[str, ...] = ("completed", "failed")


class VideoClip(BaseModel):
    id: int
    name: str
    category: str
    url: str
    duration: str
    created_at: str | None = None


class GenerateVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    categories: list[str] = Field(min_length=1)
    script: str
    use_hook: bool = Field(default=False, alias="useHook")
    total_length: float = Field(gt=0, le=3600, alias="totalLength")
    clip_duration: float = Field(gt=0, le=600, alias="clipDuration")

    @model_validator(mode="before")
    @classmethod
    def _accept_single_category(cls, data: Any) -> Any:
        # Older clients send `category` as a string or a list.
        if isinstance(data, dict) and "categories" not in data and "category" in data:
            data = dict(data)
            raw = data.pop("category")
            data["categories"] = [raw] if isinstance(raw, str) else raw
        return data

    @field_validator("categories")
    @classmethod
    def _clean_categories(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for item in value:
            name = str(item or "").strip()
            if name and name not in cleaned:
                cleaned.append(name)
        if not cleaned:
            raise ValueError("at least one category is required")
        return cleaned

    @field_validator("script")
    @classmethod
    def _require_script(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("script is required")
        return value


class GenerateVideoResponse(BaseModel):
    job_id: str = Field(serialization_alias="jobId")
    status: JobStatusName = "pending"


class GenerationJob(BaseModel):
    id: str
    categories: list[str]
    script: str
    use_hook: bool = False
    total_length: float
    clip_duration: float
    status: JobStatusName = "pending"
    progress: int = 0
    output_url: str | None = None
    error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobStatusResponse(BaseModel):
    id: str
    status: JobStatusName
    progress: int = 0
    error: str | None = None
    output_url: str | None = Field(default=None, serialization_alias="outputUrl")

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobStatusResponse":
        return cls(
            id=job.id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            output_url=job.output_url if job.status == "completed" else None,
        )
