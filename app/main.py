from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.assemble import assemble_feature_collection
from app.errors import bad_request, service_unavailable
from app.settings import Settings
from health.health import HealthBoard
from ingest.cache import MemoryAlertCache
from ingest.errors import RegistryUnavailable
from ingest.models import Category, JurisdictionState, RegistryFilter, SourceDescriptor
from ingest.orchestrator import run_cycle
from ingest.registry import FileRegistry, filter_registry
from ingest.scheduler import run_scheduler
from realtime.bus import EventBus
from realtime.sse import router as sse_router


logger = logging.getLogger(__name__)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _registry_filter(
    category: str | None,
    state: str | None,
    machine_readable: bool | None,
    tags: str | None,
) -> RegistryFilter:
    parsed_category = None
    if category:
        try:
            parsed_category = Category(category)
        except ValueError:
            bad_request("invalid_category", f"unknown category: {category}")
    parsed_state = None
    if state:
        try:
            parsed_state = JurisdictionState(state.upper())
        except ValueError:
            bad_request("invalid_state", f"unknown jurisdiction state: {state}")
    return RegistryFilter(
        category=parsed_category,
        state=parsed_state,
        machine_readable=machine_readable,
        tags=tuple(_split_csv(tags)),
    )


def _descriptor_to_dict(d: SourceDescriptor) -> dict:
    return {
        "source_id": d.source_id,
        "category": str(d.category),
        "subcategory": d.subcategory,
        "tags": list(d.tags),
        "jurisdiction_state": str(d.jurisdiction_state),
        "endpoint_url": d.endpoint_url,
        "stream_type": str(d.stream_type),
        "format": d.format,
        "access_level": str(d.access_level),
        "certainly_open": d.certainly_open,
        "machine_readable": d.machine_readable,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    registry = FileRegistry(settings.registry_path)
    bus = EventBus()
    cache = MemoryAlertCache()
    health = HealthBoard()
    client = httpx.AsyncClient(follow_redirects=True)
    app.state.settings = settings
    app.state.registry = registry
    app.state.bus = bus
    app.state.cache = cache
    app.state.health = health
    app.state.client = client

    scheduler_task = None
    if settings.poll_interval_s > 0:
        scheduler_task = asyncio.create_task(
            run_scheduler(
                settings=settings,
                registry=registry,
                client=client,
                cache=cache,
                health=health,
                bus=bus,
            )
        )
    try:
        yield
    finally:
        if scheduler_task is not None:
            scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler_task
        await client.aclose()


app = FastAPI(lifespan=lifespan)
app.include_router(sse_router)


@app.get("/alerts")
async def api_alerts(
    request: Request,
    category: str | None = None,
    state: str | None = None,
    machine_readable: bool | None = None,
    tags: str | None = None,
) -> JSONResponse:
    settings: Settings = request.app.state.settings
    registry: FileRegistry = request.app.state.registry

    flt = _registry_filter(category, state, machine_readable, tags)
    try:
        sources = registry.list_sources(flt)
    except RegistryUnavailable as e:
        logger.error("registry unavailable: %s", e)
        service_unavailable("registry_unavailable", str(e))

    if flt.category is None:
        wanted = set(_split_csv(settings.alert_categories))
        sources = [s for s in sources if str(s.category) in wanted]

    result = await run_cycle(
        sources,
        client=request.app.state.client,
        settings=settings,
        cache=request.app.state.cache,
        health=request.app.state.health,
    )
    return JSONResponse(
        assemble_feature_collection(result),
        headers={"Cache-Control": f"public, max-age={int(settings.cache_ttl_s)}"},
    )


@app.get("/registry")
def api_registry(
    request: Request,
    category: str | None = None,
    state: str | None = None,
    machine_readable: bool | None = None,
    tags: str | None = None,
) -> JSONResponse:
    registry: FileRegistry = request.app.state.registry
    flt = _registry_filter(category, state, machine_readable, tags)
    try:
        entries = filter_registry(registry.entries(), flt)
    except RegistryUnavailable as e:
        service_unavailable("registry_unavailable", str(e))
    return JSONResponse(
        {"count": len(entries), "entries": [_descriptor_to_dict(e) for e in entries]}
    )


@app.get("/health")
def api_health(request: Request) -> JSONResponse:
    health: HealthBoard = request.app.state.health
    return JSONResponse({"last_cycle": health.last_cycle, "sources": health.snapshot()})


def run_server() -> None:
    settings = Settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
