from __future__ import annotations

import asyncio
import logging

import httpx

from app.settings import Settings
from health.health import HealthBoard
from ingest.cache import AlertCache
from ingest.errors import RegistryUnavailable
from ingest.models import AggregationResult
from ingest.orchestrator import run_cycle
from ingest.registry import FileRegistry
from realtime.bus import Event, EventBus


logger = logging.getLogger(__name__)


def cycle_event(result: AggregationResult) -> Event:
    return Event(
        type="alerts.cycle",
        data={
            "generated_at": result.generated_at.isoformat().replace("+00:00", "Z"),
            "total_alerts": result.total_alerts,
            "sources_count": result.sources_count,
            "sources_ok": result.sources_ok,
            "stale": result.stale,
            "error": result.error,
        },
    )


async def poll_once(
    *,
    settings: Settings,
    registry: FileRegistry,
    client: httpx.AsyncClient,
    cache: AlertCache | None,
    health: HealthBoard | None,
    bus: EventBus,
) -> AggregationResult | None:
    try:
        sources = registry.list_sources()
    except RegistryUnavailable as e:
        logger.error("background poll skipped: %s", e)
        await bus.publish(Event(type="registry.unavailable", data={"error": str(e)}))
        return None

    result = await run_cycle(
        sources, client=client, settings=settings, cache=cache, health=health
    )
    await bus.publish(cycle_event(result))
    return result


async def run_scheduler(
    *,
    settings: Settings,
    registry: FileRegistry,
    client: httpx.AsyncClient,
    cache: AlertCache | None,
    health: HealthBoard | None,
    bus: EventBus,
) -> None:
    """Run a full cycle every poll interval to keep the cache warm."""
    interval = settings.poll_interval_s
    while True:
        try:
            await poll_once(
                settings=settings,
                registry=registry,
                client=client,
                cache=cache,
                health=health,
                bus=bus,
            )
        except Exception:
            logger.exception("background poll failed; retrying in %.0fs", interval)
        await asyncio.sleep(interval)
