"""Noteforge conversion service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from noteforge.config import Settings, settings
from noteforge.api.v1.router import v1_router, upload_router_compat
from noteforge.api.v1.health import router as health_root_router
from noteforge.api.v1 import health as health_api
from noteforge.api.v1 import jobs as jobs_api
from noteforge.converters.libreoffice import LibreOfficeRenderer
from noteforge.converters.pandoc import PandocConverter
from noteforge.errors import NoteforgeError
from noteforge.jobs.manager import JobManager
from noteforge.jobs.pipeline import PipelineExecutor
from noteforge.logging_config import configure_logging
from noteforge.processing.glyph_cache import GlyphCache
from noteforge.processing.preprocess import Preprocessor
from noteforge.storage.temp_results import TempResultStore

logger = logging.getLogger(__name__)


def build_manager(cfg: Settings, store: TempResultStore, cache: GlyphCache) -> JobManager:
    """Wire the pipeline stages and the job manager from settings."""
    pipeline = PipelineExecutor(
        store=store,
        preprocessor=Preprocessor(cache, inline_size=cfg.emoji_inline_size),
        converter=PandocConverter(
            binary=cfg.pandoc_binary,
            reference_doc=cfg.reference_doc,
            lua_filters=cfg.lua_filters,
            timeout=cfg.tool_timeout_sec,
        ),
        renderer=LibreOfficeRenderer(
            binary=cfg.libreoffice_binary,
            timeout=cfg.tool_timeout_sec,
        ),
        estimate_base_ms=cfg.estimate_base_ms,
        estimate_ms_per_kb=cfg.estimate_ms_per_kb,
        estimate_pdf_ms=cfg.estimate_pdf_ms,
    )
    return JobManager(
        pipeline=pipeline,
        store=store,
        concurrency_limit=cfg.concurrency_limit,
        artifact_ttl_seconds=cfg.artifact_ttl_minutes * 60,
        record_ttl_seconds=cfg.job_record_ttl_minutes * 60,
        cleanup_interval_seconds=cfg.cleanup_interval_minutes * 60,
        queue_slot_seconds=cfg.queue_slot_seconds,
    )


def create_app(
    cfg: Settings = settings,
    manager: Optional[JobManager] = None,
    store: Optional[TempResultStore] = None,
) -> FastAPI:
    """Build the application. ``manager`` and ``store`` are built from
    ``cfg`` at startup unless given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        configure_logging(cfg.log_level)
        logger.info(f"Starting Noteforge on port {cfg.port}")
        logger.info(f"Work dir: {cfg.work_dir}")
        logger.info(f"Concurrency limit: {cfg.concurrency_limit}")

        temp_store = store or TempResultStore(cfg.work_dir, ttl_hours=cfg.work_dir_ttl_hours)
        cache = None
        dispatcher = manager
        if dispatcher is None:
            cache = GlyphCache(
                cfg.emoji_cache_dir,
                cfg.emoji_base_url,
                timeout=cfg.emoji_fetch_timeout_sec,
            )
            dispatcher = build_manager(cfg, temp_store, cache)

        await dispatcher.start()
        logger.info("Job manager started")

        # Wire dispatcher and temp store into API endpoints
        jobs_api.set_dispatcher(dispatcher)
        jobs_api.set_temp_store(temp_store, max_upload_mb=cfg.max_upload_mb)
        health_api.set_dispatcher(dispatcher, cfg.pandoc_binary, cfg.libreoffice_binary)

        yield

        logger.info("Shutting down Noteforge")
        await dispatcher.stop()
        if cache is not None:
            await cache.aclose()
        temp_store.cleanup_expired()
        jobs_api.set_dispatcher(None)
        health_api.set_dispatcher(None)

    app = FastAPI(
        title="Noteforge",
        description="Converts Markdown notes to DOCX and PDF through pandoc and LibreOffice",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NoteforgeError)
    async def noteforge_error_handler(request: Request, exc: NoteforgeError):
        return JSONResponse(status_code=exc.http_status, content={"error": exc.message})

    # Mount routers
    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    app.include_router(upload_router_compat)  # /upload, /status, /download, /zip

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("noteforge.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
