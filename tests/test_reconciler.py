from datetime import UTC, datetime, timedelta

from cluster.reconciler import dedup_alerts, reconcile
from ingest.errors import FetchFailure, NormalizationFailure
from ingest.models import CanonicalAlert, Confidence, SourceResult


NOW = datetime(2025, 10, 10, 12, 0, tzinfo=UTC)


def _alert(
    alert_id: str,
    *,
    source_id: str = "SRC-A",
    rank: int = 3,
    confidence: Confidence = Confidence.MEDIUM,
    updated: datetime = NOW - timedelta(minutes=10),
    lon: float | None = 145.0,
    lat: float | None = -37.0,
    hazard_type: str = "Bushfire",
    state: str = "VIC",
    expires_at: datetime | None = None,
    tags: tuple[str, ...] = ("alerts",),
) -> CanonicalAlert:
    geometry = None
    if lon is not None and lat is not None:
        geometry = {"type": "Point", "coordinates": [lon, lat]}
    return CanonicalAlert(
        id=alert_id,
        source_id=source_id,
        category="Alerts",
        subcategory="State Fire Alerts",
        tags=tags,
        state=state,
        hazard_type=hazard_type,
        severity="x",
        severity_rank=rank,
        title=alert_id,
        description="",
        issued_at=updated,
        updated_at=updated,
        confidence=confidence,
        expires_at=expires_at,
        geometry=geometry,
    )


def test_dedup_merges_nearby_reports_from_different_sources() -> None:
    kept = _alert("a1", source_id="VIC-EMV", rank=1, tags=("alerts", "vic"))
    # ~110 m north, 20 minutes apart, different source.
    dup = _alert(
        "b1",
        source_id="VIC-CFA",
        rank=2,
        lat=-36.999,
        updated=NOW - timedelta(minutes=30),
        tags=("cfa",),
    )
    (merged,) = dedup_alerts([dup, kept])
    assert merged.id == "a1"
    assert merged.merged_source_ids == ("VIC-CFA",)
    assert merged.merged_alert_ids == ("b1",)
    assert merged.tags == ("alerts", "vic", "cfa")


def test_dedup_keeps_higher_confidence_on_rank_tie() -> None:
    low = _alert("a", source_id="S1", confidence=Confidence.LOW)
    high = _alert("b", source_id="S2", confidence=Confidence.HIGH)
    (merged,) = dedup_alerts([low, high])
    assert merged.id == "b"


def test_dedup_respects_distance_window_and_keys() -> None:
    base = _alert("a", source_id="S1")
    far = _alert("b", source_id="S2", lat=-37.01)  # ~1.1 km
    late = _alert("c", source_id="S3", updated=NOW - timedelta(hours=3))
    other_hazard = _alert("d", source_id="S4", hazard_type="Flood")
    other_state = _alert("e", source_id="S5", state="NSW")
    same_source = _alert("f", source_id="S1")
    out = dedup_alerts([base, far, late, other_hazard, other_state, same_source])
    assert sorted(a.id for a in out) == ["a", "b", "c", "d", "e", "f"]
    assert all(a.merged_source_ids == () for a in out)


def test_dedup_hazard_type_is_case_insensitive() -> None:
    out = dedup_alerts([_alert("a", source_id="S1"), _alert("b", source_id="S2", hazard_type="BUSHFIRE")])
    assert len(out) == 1


def test_alerts_without_geometry_never_merge() -> None:
    out = dedup_alerts(
        [_alert("a", source_id="S1", lon=None), _alert("b", source_id="S2", lon=None)]
    )
    assert len(out) == 2


def test_ordering_rank_then_recency_then_id() -> None:
    results = [
        SourceResult(
            "S1",
            alerts=(
                _alert("z", rank=3, updated=NOW - timedelta(minutes=5), lon=None),
                _alert("y", rank=1, updated=NOW - timedelta(hours=2), lon=None),
                _alert("x", rank=3, updated=NOW - timedelta(minutes=50), lon=None),
                _alert("w", rank=3, updated=NOW - timedelta(minutes=5), lon=None),
            ),
        )
    ]
    result = reconcile(results, now=NOW)
    assert [a.id for a in result.alerts] == ["y", "w", "z", "x"]
    assert result.stale is False
    assert result.error is None
    assert result.total_alerts == 4


def test_expired_alerts_are_dropped() -> None:
    results = [
        SourceResult(
            "S1",
            alerts=(
                _alert("gone", expires_at=NOW - timedelta(seconds=1)),
                _alert("edge", expires_at=NOW, lon=146.0),
                _alert("live", expires_at=NOW + timedelta(hours=1), lon=147.0),
                _alert("open", lon=148.0),
            ),
        )
    ]
    result = reconcile(results, now=NOW)
    assert sorted(a.id for a in result.alerts) == ["live", "open"]


def test_failures_make_result_stale_with_summary() -> None:
    results = [
        SourceResult("S1", alerts=(_alert("a"),)),
        SourceResult("S2", error=FetchFailure("S2", "http_500", status_code=500)),
        SourceResult("S3", error=NormalizationFailure("S3", "invalid cap xml")),
    ]
    result = reconcile(results, now=NOW)
    assert result.stale is True
    assert result.sources_count == 3
    assert result.sources_ok == 1
    assert result.error == "2 of 3 sources failed: S2 (http_500); S3 (invalid cap xml)"
    assert [f.kind for f in result.failures] == ["fetch_failure", "normalization_failure"]


def test_error_summary_is_truncated() -> None:
    results = [SourceResult(f"S{i:02d}", error=FetchFailure(f"S{i:02d}", "timeout")) for i in range(13)]
    result = reconcile(results, now=NOW)
    assert result.error.startswith("13 of 13 sources failed: S00 (timeout)")
    assert result.error.endswith("; +3 more")
    assert "S10" not in result.error


def test_no_sources_is_not_stale() -> None:
    result = reconcile([], now=NOW)
    assert result.stale is False
    assert result.sources_count == 0
    assert result.alerts == ()
    assert result.generated_at == NOW
