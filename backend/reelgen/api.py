from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings, project_path, settings as default_settings
from .errors import JobQueueFull
from .models import GenerateVideoRequest, GenerateVideoResponse, JobStatusResponse, VideoClip
from .services.job_runner import JobRunner, fail_interrupted_jobs
from .services.video_service import GenerationPipeline, ensure_directory
from .state import ClipCatalog, ClipRepository, JobRepository, JobStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def prepare_runtime(settings: Settings, pipeline: GenerationPipeline) -> None:
    """Startup checks; any failure here stops the service."""
    for raw in (settings.uploads_dir, settings.output_dir, settings.temp_dir):
        path = ensure_directory(project_path(raw))
        logger.info("Ensured directory exists: %s", path)
    pipeline.voiceover.ensure_configured()
    pipeline.media.check_available()


@router.get("/health")
async def health(request: Request) -> dict:
    runner: JobRunner = request.app.state.runner
    return {
        "status": "ok",
        "env": request.app.state.settings.app_env,
        "running": runner.running_count,
        "waiting": runner.waiting_count,
    }


@router.get("/clips", response_model=list[VideoClip])
async def list_clips(request: Request) -> list[VideoClip]:
    catalog: ClipRepository = request.app.state.catalog
    return catalog.list_all()


@router.post("/videos/generate", response_model=GenerateVideoResponse, status_code=202)
async def generate_video(request: Request, payload: GenerateVideoRequest) -> GenerateVideoResponse:
    settings: Settings = request.app.state.settings
    jobs: JobRepository = request.app.state.jobs
    runner: JobRunner = request.app.state.runner
    pipeline: GenerationPipeline = request.app.state.pipeline

    if payload.use_hook and payload.total_length <= settings.hook_duration:
        raise HTTPException(
            status_code=422,
            detail=f"totalLength must be greater than the {settings.hook_duration:g}s hook",
        )
    try:
        runner.check_admission()
    except JobQueueFull as exc:
        logger.warning("Rejected generate request: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    job_id = jobs.create(payload)
    runner.submit(job_id, partial(pipeline.run, job_id, payload))
    logger.info("Accepted generate request: job=%s categories=%s", job_id, payload.categories)
    return GenerateVideoResponse(job_id=job_id, status="pending")


@router.get("/videos/status/{job_id}", response_model=JobStatusResponse)
async def video_status(request: Request, job_id: str) -> JobStatusResponse:
    jobs: JobRepository = request.app.state.jobs
    job = jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return JobStatusResponse.from_job(job)


def create_app(
    settings: Settings | None = None,
    jobs: JobRepository | None = None,
    catalog: ClipRepository | None = None,
    pipeline: GenerationPipeline | None = None,
    runner: JobRunner | None = None,
    startup_checks: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    jobs = jobs or JobStore(db_path=project_path(settings.database_path))
    catalog = catalog or ClipCatalog(db_path=project_path(settings.database_path))
    pipeline = pipeline or GenerationPipeline.from_settings(settings, jobs, catalog)
    runner = runner or JobRunner.from_settings(settings, jobs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if startup_checks:
            prepare_runtime(settings, pipeline)
        interrupted = fail_interrupted_jobs(jobs)
        if interrupted:
            logger.warning("Failed %s job(s) interrupted by a previous shutdown: %s", len(interrupted), ", ".join(interrupted))
        runner.start()
        try:
            yield
        finally:
            await runner.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.jobs = jobs
    app.state.catalog = catalog
    app.state.pipeline = pipeline
    app.state.runner = runner

    origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Accept-Ranges", "Content-Range", "Content-Length"],
    )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": f"internal error: {exc}"})

    app.include_router(router)

    # StaticFiles answers Range requests, which browsers need for seeking.
    app.mount(
        "/uploads",
        StaticFiles(directory=project_path(settings.uploads_dir), check_dir=False),
        name="uploads",
    )
    app.mount(
        "/videos",
        StaticFiles(directory=project_path(settings.output_dir), check_dir=False),
        name="videos",
    )
    return app

