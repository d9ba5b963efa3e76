#!/usr/bin/env python3
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import anyio
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, StrictStr, ValidationError

from config.settings import CORS_ORIGINS, HOST, PORT, PROVIDER_REFRESH_MINUTES, STREAM_CHUNK_SIZE
from engine.acquisition import AcquisitionCoordinator
from engine.audio_service import AudioService
from engine.json_utils import log_event
from engine.paths import EnginePaths, build_engine_paths, ensure_dir
from engine.results import ALL_KINDS
from engine.search_service import MODE_FULL, MODE_MINIMAL, ProviderUnavailable, SearchService
from engine.search_store import SearchStore
from media.acquirer import AcquisitionError, ToolFailedError, YtDlpAcquirer
from media.cache_store import TIER_FORMATS, CacheStore, Tier, encode_identifier, identifier_fits
from media.range_server import RangeNotSatisfiable, full_file_response, range_response
from media.thumbnail import ThumbnailError, ThumbnailService
from piped.client import PipedClient
from piped.selector import ProviderSelector
from spotify.client import SpotifySearchClient
from spotify.search import SpotifySearchError, SpotifySearchService

APP_NAME = "tunecache"
PROVIDER_REFRESH_JOB_ID = "provider_refresh"


@dataclass
class Services:
    paths: EnginePaths
    cache_store: CacheStore
    audio: AudioService
    search: SearchService
    selector: ProviderSelector
    thumbnails: ThumbnailService
    spotify: SpotifySearchService


def build_services(paths: EnginePaths) -> Services:
    cache_store = CacheStore(paths)
    # Audio and thumbnails share one coordinator; their keys never collide.
    coordinator = AcquisitionCoordinator()
    selector = ProviderSelector()
    return Services(
        paths=paths,
        cache_store=cache_store,
        audio=AudioService(cache_store, YtDlpAcquirer(cache_store, paths.tmp_dir), coordinator),
        search=SearchService(
            SearchStore(paths.search_cache_path, paths.search_weights_path),
            PipedClient(selector.current),
        ),
        selector=selector,
        thumbnails=ThumbnailService(cache_store, coordinator),
        spotify=SpotifySearchService(SpotifySearchClient(), paths.spotify_cache_path),
    )


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.join(log_dir, "tunecache.log")
    root.setLevel(logging.INFO)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_path):
                return
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    root.addHandler(file_handler)


def _start_provider_scheduler(selector):
    if PROVIDER_REFRESH_MINUTES <= 0:
        logging.info("Provider refresh scheduler disabled")
        return None
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        selector.refresh,
        trigger=IntervalTrigger(minutes=PROVIDER_REFRESH_MINUTES),
        id=PROVIDER_REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    scheduler.start()
    logging.info("Provider refresh scheduled every %d minutes", PROVIDER_REFRESH_MINUTES)
    return scheduler


@asynccontextmanager
async def lifespan(app):
    paths = build_engine_paths()
    _setup_logging(paths.log_dir)
    services = build_services(paths)
    app.state.services = services
    logging.info("Cache root: %s", paths.cache_dir)
    await anyio.to_thread.run_sync(services.selector.refresh)
    app.state.scheduler = _start_provider_scheduler(services.selector)
    try:
        yield
    finally:
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler:
            scheduler.shutdown(wait=False)


app = FastAPI(
    title=APP_NAME,
    description="Caching audio proxy: catalog search, on-demand acquisition and range streaming.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class UpdateWeightPayload(BaseModel):
    query: Optional[StrictStr] = None
    selectedId: Optional[StrictStr] = None


@app.exception_handler(AcquisitionError)
async def acquisition_error_handler(request: Request, exc: AcquisitionError):
    details = exc.details if isinstance(exc, ToolFailedError) else str(exc)
    log_event(logging.ERROR, "request_failed", path=request.url.path, error=type(exc).__name__, details=details)
    return JSONResponse(status_code=500, content={"detail": "Failed to fetch audio"})


@app.exception_handler(RangeNotSatisfiable)
async def range_not_satisfiable_handler(request: Request, exc: RangeNotSatisfiable):
    logging.warning("Unsatisfiable range %r for size %d", exc.range_header, exc.file_size)
    return Response(status_code=416, headers={"Content-Range": f"bytes */{exc.file_size}"})


@app.exception_handler(ProviderUnavailable)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailable):
    return JSONResponse(status_code=500, content={"detail": "Failed to fetch search results"})


@app.exception_handler(ThumbnailError)
async def thumbnail_error_handler(request: Request, exc: ThumbnailError):
    logging.error("Thumbnail failed: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Failed to fetch thumbnail"})


@app.exception_handler(SpotifySearchError)
async def spotify_error_handler(request: Request, exc: SpotifySearchError):
    return JSONResponse(status_code=500, content={"detail": "Failed to fetch search results"})


def _services() -> Services:
    services = getattr(app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return services


def _require_identifier(value):
    identifier = (value or "").strip()
    if not identifier:
        raise HTTPException(status_code=400, detail="id is required")
    if any(ord(ch) < 32 for ch in identifier) or not identifier_fits(identifier):
        raise HTTPException(status_code=400, detail="id is invalid")
    return identifier


def _require_tier(value):
    tier = Tier.parse(value)
    if tier is None:
        raise HTTPException(status_code=400, detail="quality must be 'compressed' or 'lossless'")
    return tier


def _require_query(value):
    query = " ".join((value or "").split())
    if not query:
        raise HTTPException(status_code=400, detail="query is required")
    return query


@app.get("/", response_class=HTMLResponse)
async def index():
    return "<html><body><h1>tunecache</h1></body></html>"


@app.get("/download")
async def download(id: Optional[str] = Query(None), quality: Optional[str] = Query(None)):
    identifier = _require_identifier(id)
    tier = _require_tier(quality)
    services = _services()
    start = time.monotonic()
    path = await services.audio.get_audio(identifier, tier)
    logging.info(
        "Download %s (%s) ready in %d ms",
        identifier,
        tier.value,
        int((time.monotonic() - start) * 1000),
    )
    filename = f"{encode_identifier(identifier)}.{TIER_FORMATS[tier].extension}"
    return await full_file_response(path, services.cache_store.mime_type(tier), filename=filename)


@app.get("/stream")
async def stream(request: Request, id: Optional[str] = Query(None), quality: Optional[str] = Query(None)):
    identifier = _require_identifier(id)
    tier = _require_tier(quality)
    services = _services()
    path = await services.audio.get_audio(identifier, tier)
    return await range_response(
        path,
        services.cache_store.mime_type(tier),
        request.headers.get("range"),
        STREAM_CHUNK_SIZE,
    )


@app.get("/search")
async def search(
    query: Optional[str] = Query(None),
    filter: Optional[str] = Query(None),
    mode: Optional[str] = Query(None),
):
    text = _require_query(query)
    kinds = ALL_KINDS
    if filter:
        kind = filter.strip().lower()
        if kind not in ALL_KINDS:
            raise HTTPException(status_code=400, detail=f"filter must be one of {', '.join(ALL_KINDS)}")
        kinds = (kind,)
    search_mode = (mode or MODE_FULL).strip().lower()
    if search_mode not in (MODE_FULL, MODE_MINIMAL):
        raise HTTPException(status_code=400, detail="mode must be 'full' or 'minimal'")
    return await _services().search.search(text, kinds, search_mode)


@app.post("/search/update-weight")
async def update_weight(request: Request):
    try:
        payload = UpdateWeightPayload.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="body must be a JSON object with string query and selectedId")
    query = (payload.query or "").strip()
    selected_id = (payload.selectedId or "").strip()
    if not query or not selected_id:
        raise HTTPException(status_code=400, detail="query and selectedId are required")
    count = await _services().search.record_selection(query, selected_id)
    logging.info("Weight updated query=%r id=%s count=%d", query, selected_id, count)
    return {"success": True}


@app.get("/thumbnail")
async def thumbnail(id: Optional[str] = Query(None)):
    identifier = _require_identifier(id)
    path = await _services().thumbnails.get_thumbnail(identifier)
    return await full_file_response(path, "image/webp")


def _instances_response(selector):
    return {
        "active": selector.current(),
        "instances": [result.to_dict() for result in selector.candidates()],
    }


@app.get("/instances")
async def instances():
    return _instances_response(_services().selector)


@app.post("/instances/refresh")
async def refresh_instances():
    selector = _services().selector
    await anyio.to_thread.run_sync(selector.refresh)
    return _instances_response(selector)


@app.get("/search-spotify")
async def search_spotify(query: Optional[str] = Query(None)):
    text = _require_query(query)
    return await _services().spotify.search(text)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=HOST, port=PORT, reload=False)
