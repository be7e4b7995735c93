"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from yt_batch import __version__
from yt_batch.api import jobs_router
from yt_batch.api.deps import init_services
from yt_batch.core.config import Settings, load_settings
from yt_batch.core.exceptions import YtBatchError
from yt_batch.core.logging import configure_logging
from yt_batch.services.backends import JsonFileBackend, PersistenceBackend
from yt_batch.services.job_service import JobService
from yt_batch.services.job_store import Clock, JobStore, utc_now
from yt_batch.services.manifest import CsvManifestSource
from yt_batch.services.session_store import SessionStore
from yt_batch.services.storage import UploadStorage

logger = structlog.get_logger()

# HTTP status per error code; anything else is a 500
ERROR_STATUS = {
    "CONFIGURATION_ERROR": 400,
    "NOT_AUTHORIZED": 403,
    "JOB_NOT_FOUND": 404,
    "INVALID_STATE": 409,
    "MANIFEST_ERROR": 400,
    "CREDENTIAL_ERROR": 401,
}


def create_app(
    settings: Optional[Settings] = None,
    jobs_backend: Optional[PersistenceBackend] = None,
    sessions_backend: Optional[PersistenceBackend] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Build the application. Backends default to the JSON files named in settings."""
    if settings is None:
        settings = load_settings()
        configure_logging(settings.logging)

    storage_config = settings.storage
    job_store = JobStore(
        jobs_backend or JsonFileBackend(storage_config.queue_path),
        clock=clock,
        # Only the worker writes progress; the web process writes straight through
        debounce_seconds=0,
    )
    session_store = SessionStore(
        sessions_backend or JsonFileBackend(storage_config.sessions_path, key_field="sessionId")
    )
    job_service = JobService(
        job_store,
        UploadStorage(storage_config.uploads_dir),
        CsvManifestSource(),
        clock=clock,
    )
    init_services(settings, job_service, session_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(
            "server_starting",
            version=__version__,
            host=settings.server.host,
            port=settings.server.port,
            queue_path=str(storage_config.queue_path),
        )
        yield
        job_store.flush()
        logger.info("server_stopped")

    app = FastAPI(
        title="YT Batch Uploader",
        description="Scheduled batch uploads to YouTube",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(YtBatchError)
    async def handle_error(request: Request, exc: YtBatchError) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.code, 500)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(jobs_router)

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with server info."""
        return {
            "name": "YT Batch Uploader",
            "version": __version__,
            "status": "running",
        }

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        google = settings.google.with_credentials_file()
        return {
            "status": "healthy",
            "version": __version__,
            "storage": {
                "queue_file": storage_config.queue_path.exists(),
                "sessions_file": storage_config.sessions_path.exists(),
                "uploads_dir": UploadStorage(storage_config.uploads_dir).root.is_dir(),
            },
            "google_configured": google.is_configured,
            "sessions": session_store.reload(),
            "queue": job_store.get_queue_stats(),
        }

    return app
