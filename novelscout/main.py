"""Main FastAPI application for the novelscout service.

This module defines the HTTP API and wires the orchestration components
together. ``create_app`` accepts each component so tests (or an embedding
process) can swap in their own; the module-level ``app`` uses the defaults
from ``config``.

On startup the database is initialised, the source registry is restored
from storage and seeded with the built-in sources, and the health monitor
starts its first probe cycle. On shutdown the monitor is stopped and the
shared browser is closed. Whole-novel downloads run as background tasks;
clients poll ``/jobs/{id}`` for progress and fetch the merged TXT from
``/downloads/{id}`` when the job is done.
"""

from __future__ import annotations

import re
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse
from loguru import logger
from pydantic import ValidationError

from . import config, db
from .assembler import ChapterAssembler
from .browser import AutomationPool
from .cache import ResultCache
from .errors import ExtractionError, InvalidQuery, InvalidSource, NovelScoutError
from .extractor import package_txt
from .fetcher import ResilientFetcher
from .health import HealthMonitor
from .log import setup_logging
from .models import (
    ChapterRef,
    DownloadRequest,
    NovelRecord,
    SourceDefinition,
    SourceStatus,
    SourceToggle,
)
from .registry import SourceRegistry
from .search import SearchOrchestrator
from .sources import load_sources


def _safe_filename(name: str) -> str:
    cleaned = re.sub(r'[\\/:*?"<>|\s]+', "_", name).strip("_")
    return cleaned or "novel"


def create_app(
    registry: Optional[SourceRegistry] = None,
    fetcher: Optional[ResilientFetcher] = None,
    cache: Optional[ResultCache] = None,
    monitor: Optional[HealthMonitor] = None,
    pool: Optional[AutomationPool] = None,
    sources: Optional[Sequence[SourceDefinition]] = None,
    start_monitor: bool = config.MONITOR_ENABLED,
    data_dir: Optional[Path] = None,
) -> FastAPI:
    registry = registry or SourceRegistry()
    if fetcher is None:
        pool = pool or AutomationPool()
        fetcher = ResilientFetcher(pool)
    cache = cache or ResultCache.from_config()
    monitor = monitor or HealthMonitor(registry)
    data_dir = Path(data_dir or config.DATA_DIR)

    orchestrator = SearchOrchestrator(registry, fetcher, cache)
    assembler = ChapterAssembler(fetcher, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        db.init_db()
        registry.load()
        added = registry.seed(sources if sources is not None else load_sources(config.SOURCES_FILE))
        logger.info(f"Source registry ready: {len(registry.list(enabled_only=False))} sources ({added} new)")
        if start_monitor:
            monitor.start()
        try:
            yield
        finally:
            await monitor.stop()
            if pool is not None:
                await pool.close()
            await cache.close()

    app = FastAPI(title="novelscout", description="Aggregated web novel search and download", lifespan=lifespan)
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.assembler = assembler
    app.state.monitor = monitor

    @app.exception_handler(NovelScoutError)
    async def novelscout_error_handler(request: Request, exc: NovelScoutError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    async def background_download(job_id: str, chapters: List[ChapterRef], request: DownloadRequest, filename: str) -> None:
        """Background task assembling the selected chapters into a TXT file."""
        try:
            db.update_job(job_id, status="running", progress=0)

            def report(processed: int, total: int) -> None:
                db.update_job(job_id, processed=processed, progress=int(processed / total * 100))

            document = await assembler.assemble(chapters, request.source, title=request.title, on_progress=report)
            path = package_txt(filename, document, str(data_dir / "downloads" / job_id))
            db.update_job(job_id, status="done", progress=100, result_path=path)
        except Exception as e:
            logger.opt(exception=e).error(f"Download job {job_id} failed")
            db.update_job(job_id, status="error", error=str(e))

    @app.get("/search", response_model=List[NovelRecord])
    async def search_endpoint(keyword: Optional[str] = None, source: Optional[str] = None) -> List[NovelRecord]:
        """Search every enabled source (or only ``source``) for ``keyword``."""
        return await orchestrator.search(keyword, source)

    @app.get("/chapters", response_model=List[ChapterRef])
    async def chapters_endpoint(url: str = "", source: Optional[str] = None) -> List[ChapterRef]:
        return await orchestrator.list_chapters(url, source)

    @app.get("/content")
    async def content_endpoint(url: str = "", source: Optional[str] = None) -> Dict[str, str]:
        if not url.strip():
            raise InvalidQuery("A chapter url is required")
        return {"content": await assembler.fetch_content(url, source)}

    @app.get("/sources", response_model=List[SourceStatus])
    async def list_sources_endpoint() -> List[SourceStatus]:
        return [SourceStatus.from_definition(s) for s in registry.list(enabled_only=False)]

    @app.post("/sources", status_code=201, response_model=SourceStatus)
    async def register_source_endpoint(request: Request) -> SourceStatus:
        """Register a new source. The body is a source definition object."""
        try:
            data = await request.json()
        except ValueError:
            raise InvalidSource("Request body must be a JSON object") from None
        return SourceStatus.from_definition(registry.register(data))

    @app.patch("/sources/{name}", response_model=SourceStatus)
    async def toggle_source_endpoint(name: str, toggle: SourceToggle) -> SourceStatus:
        return SourceStatus.from_definition(registry.set_enabled(name, toggle.enabled))

    @app.post("/health/check")
    async def health_check_endpoint() -> Dict[str, bool]:
        """Run one probe cycle immediately and return name → reachable."""
        return await monitor.run_cycle()

    @app.post("/downloads")
    async def download_endpoint(request: DownloadRequest, background_tasks: BackgroundTasks) -> JSONResponse:
        """Start assembling a novel (or a chapter range of it) into one TXT file.

        The chapter index is fetched up front so that an invalid range is
        rejected immediately. A job identifier is returned; clients poll
        ``/jobs/{id}`` for progress.
        """
        chapters = await orchestrator.list_chapters(request.url, request.source)
        if not chapters:
            raise ExtractionError(f"No chapters found at {request.url}")
        start = request.start if request.start is not None else 1
        end = request.end if request.end is not None else len(chapters)
        if start < 1 or start > end:
            raise InvalidQuery("Please enter a valid chapter range")
        if end > len(chapters):
            raise InvalidQuery(f"The novel only has {len(chapters)} chapters")
        selected = chapters[start - 1:end]

        name = _safe_filename(request.title or "novel")
        if request.start is not None or request.end is not None:
            name = f"{name}_{start}-{end}"
        job_id = str(uuid.uuid4())
        db.insert_job({
            "id": job_id,
            "payload": {"url": request.url, "source": request.source, "filename": name, "start": start, "end": end},
            "status": "queued",
            "total": len(selected),
        })
        background_tasks.add_task(background_download, job_id, selected, request, name)
        return JSONResponse({"job_id": job_id, "total": len(selected)})

    @app.get("/jobs/{job_id}")
    async def job_status(job_id: str) -> Dict[str, Any]:
        job = db.get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return {
            "id": job["id"],
            "status": job.get("status"),
            "progress": job.get("progress"),
            "processed": job.get("processed"),
            "total": job.get("total"),
            "message": f"processed {job.get('processed') or 0} of {job.get('total') or 0}",
            "error": job.get("error"),
        }

    @app.get("/downloads/{job_id}")
    async def download_file(job_id: str) -> FileResponse:
        job = db.get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        if job.get("status") != "done" or not job.get("result_path"):
            raise HTTPException(status_code=409, detail=f"Job is {job.get('status')}")
        path = Path(job["result_path"])
        if not path.exists():
            raise HTTPException(status_code=404, detail="Download file missing")
        return FileResponse(str(path), filename=path.name, media_type="text/plain; charset=utf-8")

    @app.get("/favorites")
    async def list_favorites() -> List[Dict[str, Any]]:
        return db.list_favorites()

    @app.post("/favorites", status_code=201)
    async def add_favorite(request: Request) -> Dict[str, Any]:
        """Save a novel. Accepts a NovelRecord or ``{"novel": NovelRecord}``."""
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body must be a JSON object") from None
        if isinstance(data, dict) and isinstance(data.get("novel"), dict):
            data = data["novel"]
        if not isinstance(data, dict) or not str(data.get("title") or "").strip():
            raise HTTPException(status_code=400, detail="A novel with a title is required")
        try:
            novel = NovelRecord.model_validate(data).model_dump()
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid novel record") from None
        return dict(novel, id=db.add_favorite(novel))

    @app.delete("/favorites/{favorite_id}")
    async def remove_favorite(favorite_id: int) -> Dict[str, Any]:
        if not db.delete_favorite(favorite_id):
            raise HTTPException(status_code=404, detail="Favorite not found")
        return {"deleted": favorite_id}

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "healthy", "service": "novelscout", "sources": len(registry.names())}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("novelscout.main:app", host=config.API_HOST, port=config.API_PORT)
