from __future__ import annotations

from datetime import datetime

from ingest.models import AggregationResult, CanonicalAlert, SourceFailure


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def alert_to_feature(alert: CanonicalAlert, generated_at: datetime) -> dict:
    age_s = max(0, int((generated_at - alert.updated_at).total_seconds()))
    return {
        "type": "Feature",
        "id": alert.id,
        "geometry": alert.geometry,
        "properties": {
            "id": alert.id,
            "source_id": alert.source_id,
            "category": alert.category,
            "subcategory": alert.subcategory,
            "tags": list(alert.tags),
            "state": alert.state,
            "hazard_type": alert.hazard_type,
            "severity": alert.severity,
            "severity_rank": alert.severity_rank,
            "title": alert.title,
            "description": alert.description,
            "issued_at": _iso(alert.issued_at),
            "updated_at": _iso(alert.updated_at),
            "expires_at": _iso(alert.expires_at),
            "url": alert.url,
            "confidence": str(alert.confidence),
            "age_s": age_s,
            "merged_source_ids": list(alert.merged_source_ids),
            "merged_alert_ids": list(alert.merged_alert_ids),
        },
    }


def _failure_to_dict(failure: SourceFailure) -> dict:
    return {"source_id": failure.source_id, "kind": failure.kind, "reason": failure.reason}


def assemble_feature_collection(result: AggregationResult) -> dict:
    metadata: dict = {
        "total_alerts": result.total_alerts,
        "sources_count": result.sources_count,
        "sources_ok": result.sources_ok,
        "stale": result.stale,
        "generated_at": _iso(result.generated_at),
        "error": result.error,
        "failures": [_failure_to_dict(f) for f in result.failures],
    }

    return {
        "type": "FeatureCollection",
        "features": [alert_to_feature(a, result.generated_at) for a in result.alerts],
        "metadata": metadata,
    }
