from __future__ import annotations

import logging
import re
import time
from datetime import UTC, datetime

import httpx

from ingest.errors import FetchFailure
from ingest.models import RawPayload, SourceDescriptor


logger = logging.getLogger(__name__)

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")

_ACCEPT = (
    "application/geo+json, application/json, application/xml, "
    "application/rss+xml, text/xml, */*"
)


def cache_control_max_age_seconds(cache_control: str | None) -> int | None:
    if cache_control is None:
        return None
    if "no-store" in cache_control or "no-cache" in cache_control:
        return 0
    match = _MAX_AGE_RE.search(cache_control)
    if match is None:
        return None
    return int(match.group(1))


def _timeout(timeout_s: float) -> httpx.Timeout:
    connect = min(5.0, timeout_s)
    return httpx.Timeout(connect=connect, read=timeout_s, write=connect, pool=connect)


async def fetch(
    client: httpx.AsyncClient,
    descriptor: SourceDescriptor,
    *,
    user_agent: str,
    timeout_s: float = 10.0,
) -> RawPayload:
    """One GET against the descriptor's endpoint. No retries.

    Raises FetchFailure on network errors, timeouts and non-2xx responses.
    """
    headers = {"User-Agent": user_agent, "Accept": _ACCEPT}
    fetched_at = datetime.now(tz=UTC)
    started = time.perf_counter()

    try:
        response = await client.get(
            descriptor.endpoint_url,
            headers=headers,
            timeout=_timeout(timeout_s),
            follow_redirects=True,
        )
    except httpx.TimeoutException as e:
        raise FetchFailure(descriptor.source_id, "timeout") from e
    except httpx.RequestError as e:
        raise FetchFailure(
            descriptor.source_id, f"network_error:{e.__class__.__name__}"
        ) from e

    redirects = tuple(str(r.url) for r in response.history)
    if redirects:
        logger.debug(
            "%s redirected via %s to %s",
            descriptor.source_id,
            " -> ".join(redirects),
            response.url,
        )

    if not response.is_success:
        raise FetchFailure(
            descriptor.source_id,
            f"http_{response.status_code}",
            status_code=response.status_code,
            redirects=redirects,
        )

    return RawPayload(
        source_id=descriptor.source_id,
        content=response.content,
        content_type=response.headers.get("content-type"),
        status_code=response.status_code,
        elapsed_ms=int((time.perf_counter() - started) * 1000),
        fetched_at=fetched_at,
        final_url=str(response.url),
        redirects=redirects,
        max_age_s=cache_control_max_age_seconds(response.headers.get("cache-control")),
    )
