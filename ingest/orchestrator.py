from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import UTC, datetime
from urllib.parse import urlsplit

import httpx

from app.settings import Settings
from cluster.reconciler import reconcile
from health.health import HealthBoard
from ingest.cache import AlertCache
from ingest.errors import FetchFailure, NormalizationFailure, PipelineError
from ingest.fetch import fetch
from ingest.models import AggregationResult, SourceDescriptor, SourceResult
from normalize.normalize import normalizer_for


logger = logging.getLogger(__name__)


def _failed(
    descriptor: SourceDescriptor, error: PipelineError, health: HealthBoard | None
) -> SourceResult:
    if health is not None:
        health.record_fetch_error(
            source_id=descriptor.source_id,
            status_code=getattr(error, "status_code", None),
            error=f"{error.kind}:{error.reason}",
        )
    return SourceResult(descriptor.source_id, error=error)


async def _run_source(
    client: httpx.AsyncClient,
    descriptor: SourceDescriptor,
    settings: Settings,
    cache: AlertCache | None,
    health: HealthBoard | None,
) -> SourceResult:
    """Cache lookup, fetch, normalize. Source errors come back in the result."""
    if cache is not None:
        cached = cache.get(descriptor.source_id)
        if cached is not None:
            return SourceResult(descriptor.source_id, alerts=cached, from_cache=True)

    try:
        normalizer = normalizer_for(descriptor)
        try:
            payload = await asyncio.wait_for(
                fetch(
                    client,
                    descriptor,
                    user_agent=settings.user_agent,
                    timeout_s=settings.fetch_timeout_s,
                ),
                timeout=settings.fetch_timeout_s,
            )
        except TimeoutError as e:
            raise FetchFailure(descriptor.source_id, "timeout") from e
        alerts = tuple(normalizer(payload, descriptor))
    except PipelineError as e:
        level = logging.WARNING if isinstance(e, FetchFailure) else logging.INFO
        logger.log(level, "source %s failed (%s): %s", descriptor.source_id, e.kind, e.reason)
        return _failed(descriptor, e, health)
    except Exception as e:
        logger.exception("source %s: unexpected error while normalizing", descriptor.source_id)
        error = NormalizationFailure(descriptor.source_id, f"{type(e).__name__}: {e}")
        return _failed(descriptor, error, health)

    if health is not None:
        health.record_fetch_success(
            source_id=descriptor.source_id,
            status_code=payload.status_code,
            fetch_ms=payload.elapsed_ms,
            alert_count=len(alerts),
        )
    if cache is not None:
        ttl = payload.max_age_s if payload.max_age_s is not None else settings.cache_ttl_s
        cache.set(descriptor.source_id, alerts, ttl)
    logger.debug(
        "source %s: %d alerts in %d ms", descriptor.source_id, len(alerts), payload.elapsed_ms
    )
    return SourceResult(descriptor.source_id, alerts=alerts)


async def run_sources(
    sources: list[SourceDescriptor],
    *,
    client: httpx.AsyncClient,
    settings: Settings,
    cache: AlertCache | None = None,
    health: HealthBoard | None = None,
) -> list[SourceResult]:
    """Fetch and normalize every source with a bounded worker pool.

    Returns one result per source, in input order. Sources still running when
    the cycle deadline passes are cancelled and reported as timeouts.
    """
    if not sources:
        return []

    slots: list[SourceResult | None] = [None] * len(sources)
    queue: asyncio.Queue[int] = asyncio.Queue()
    for index in range(len(sources)):
        queue.put_nowait(index)

    host_sems: dict[str, asyncio.Semaphore] = {}

    async def worker() -> None:
        while True:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            descriptor = sources[index]
            host = urlsplit(descriptor.endpoint_url).netloc
            host_sem = host_sems.setdefault(
                host, asyncio.Semaphore(settings.per_host_concurrency)
            )
            async with host_sem:
                slots[index] = await _run_source(client, descriptor, settings, cache, health)

    pool_size = min(settings.worker_pool_size, len(sources))
    workers = [asyncio.create_task(worker()) for _ in range(pool_size)]
    _, pending = await asyncio.wait(workers, timeout=settings.cycle_deadline_s)
    for task in pending:
        task.cancel()
    for task in pending:
        with suppress(asyncio.CancelledError):
            await task
    for task in workers:
        if not task.cancelled() and task.exception() is not None:
            logger.error("worker stopped early", exc_info=task.exception())

    results: list[SourceResult] = []
    for descriptor, slot in zip(sources, slots):
        if slot is None:
            if pending:
                logger.warning(
                    "source %s did not finish before the cycle deadline", descriptor.source_id
                )
                error = FetchFailure(descriptor.source_id, "timeout")
            else:
                error = FetchFailure(descriptor.source_id, "worker_error")
            slot = _failed(descriptor, error, health)
        results.append(slot)
    return results


async def run_cycle(
    sources: list[SourceDescriptor],
    *,
    client: httpx.AsyncClient,
    settings: Settings,
    cache: AlertCache | None = None,
    health: HealthBoard | None = None,
    now: datetime | None = None,
) -> AggregationResult:
    results = await run_sources(
        sources, client=client, settings=settings, cache=cache, health=health
    )
    result = reconcile(
        results,
        now=now or datetime.now(tz=UTC),
        dedup_distance_m=settings.dedup_distance_m,
        dedup_window_s=settings.dedup_window_s,
        min_success_fraction=settings.stale_threshold,
    )
    logger.info(
        "cycle: %d sources, %d ok, %d alerts, stale=%s",
        result.sources_count,
        result.sources_ok,
        result.total_alerts,
        result.stale,
    )
    if health is not None:
        health.last_cycle = {
            "generated_at": result.generated_at.isoformat().replace("+00:00", "Z"),
            "sources_count": result.sources_count,
            "sources_ok": result.sources_ok,
            "total_alerts": result.total_alerts,
            "stale": result.stale,
            "error": result.error,
        }
    return result
