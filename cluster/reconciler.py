from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime

from geo.geometry import centroid, haversine_m
from ingest.models import AggregationResult, CanonicalAlert, SourceFailure, SourceResult
from normalize.severity import CONFIDENCE_ORDER


logger = logging.getLogger(__name__)

MAX_ERROR_SOURCES = 10


def is_current(alert: CanonicalAlert, now: datetime) -> bool:
    return alert.expires_at is None or alert.expires_at > now


def _candidate_key(alert: CanonicalAlert) -> tuple:
    return (
        alert.severity_rank,
        -CONFIDENCE_ORDER[alert.confidence],
        -alert.updated_at.timestamp(),
        alert.id,
    )


def display_order_key(alert: CanonicalAlert) -> tuple:
    return (alert.severity_rank, -alert.updated_at.timestamp(), alert.id)


@dataclasses.dataclass
class _Group:
    kept: CanonicalAlert
    point: tuple[float, float]
    source_ids: list[str]
    alert_ids: list[str]
    tags: list[str]

    def merged(self) -> CanonicalAlert:
        if len(self.source_ids) == 1:
            return self.kept
        return dataclasses.replace(
            self.kept,
            tags=tuple(self.tags),
            merged_source_ids=tuple(self.source_ids[1:]),
            merged_alert_ids=tuple(self.alert_ids[1:]),
        )


def dedup_alerts(
    alerts: list[CanonicalAlert],
    *,
    distance_m: float = 500.0,
    window_s: float = 3600.0,
) -> list[CanonicalAlert]:
    """Collapse reports of the same event from different sources.

    Alerts group when they share state and hazard type, their centroids are
    within `distance_m` and their updated_at within `window_s` of the kept
    alert. The strongest alert (rank, then confidence, then recency) is kept.
    Alerts without geometry never group.
    """
    groups: dict[tuple[str, str], list[_Group]] = {}
    out: list[_Group | CanonicalAlert] = []

    for alert in sorted(alerts, key=_candidate_key):
        point = centroid(alert.geometry)
        if point is None:
            out.append(alert)
            continue

        key = (alert.state, alert.hazard_type.strip().casefold())
        target = None
        for group in groups.get(key, []):
            if alert.source_id in group.source_ids:
                continue
            delta_s = abs((alert.updated_at - group.kept.updated_at).total_seconds())
            if delta_s > window_s:
                continue
            if haversine_m(point[0], point[1], group.point[0], group.point[1]) > distance_m:
                continue
            target = group
            break

        if target is None:
            group = _Group(
                kept=alert,
                point=point,
                source_ids=[alert.source_id],
                alert_ids=[alert.id],
                tags=list(alert.tags),
            )
            groups.setdefault(key, []).append(group)
            out.append(group)
            continue

        target.source_ids.append(alert.source_id)
        target.alert_ids.append(alert.id)
        for tag in alert.tags:
            if tag not in target.tags:
                target.tags.append(tag)
        logger.debug("alert %s merged into %s", alert.id, target.kept.id)

    return [g.merged() if isinstance(g, _Group) else g for g in out]


def _error_summary(failures: list[SourceFailure], total: int) -> str | None:
    if not failures:
        return None
    shown = "; ".join(f"{f.source_id} ({f.reason})" for f in failures[:MAX_ERROR_SOURCES])
    text = f"{len(failures)} of {total} sources failed: {shown}"
    if len(failures) > MAX_ERROR_SOURCES:
        text += f"; +{len(failures) - MAX_ERROR_SOURCES} more"
    return text


def reconcile(
    results: list[SourceResult],
    *,
    now: datetime | None = None,
    dedup_distance_m: float = 500.0,
    dedup_window_s: float = 3600.0,
    min_success_fraction: float = 0.5,
) -> AggregationResult:
    now = now or datetime.now(tz=UTC)

    current: list[CanonicalAlert] = []
    failures: list[SourceFailure] = []
    for result in results:
        if result.error is not None:
            failures.append(
                SourceFailure(
                    source_id=result.source_id,
                    kind=result.error.kind,
                    reason=result.error.reason,
                )
            )
            continue
        current.extend(a for a in result.alerts if is_current(a, now))

    alerts = dedup_alerts(current, distance_m=dedup_distance_m, window_s=dedup_window_s)
    alerts.sort(key=display_order_key)

    sources_count = len(results)
    sources_ok = sources_count - len(failures)
    stale = False
    if sources_count:
        stale = bool(failures) or (sources_ok / sources_count) < min_success_fraction

    return AggregationResult(
        alerts=tuple(alerts),
        sources_count=sources_count,
        sources_ok=sources_ok,
        stale=stale,
        generated_at=now,
        error=_error_summary(failures, sources_count),
        failures=tuple(failures),
    )
