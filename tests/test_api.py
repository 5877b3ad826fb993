from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.settings import Settings
from health.health import HealthBoard
from ingest.cache import MemoryAlertCache
from ingest.registry import FileRegistry
from realtime.bus import EventBus


FIXTURES = Path(__file__).resolve().parent / "fixtures"

REGISTRY_YAML = """
- source_id: VIC-EMV-ALERTS-GEOJSON
  category: Alerts
  subcategory: State Fire Alerts
  tags: [alerts, fire, vic]
  jurisdiction_state: VIC
  endpoint_url: https://vic.example/events.json
  stream_type: geojson
  certainly_open: true
  machine_readable: true

- source_id: QLD-QFES-BUSHFIRE-CAPAU
  category: Alerts
  subcategory: State Fire Alerts
  tags: [alerts, fire, qld]
  jurisdiction_state: QLD
  endpoint_url: https://qld.example/cap.xml
  stream_type: cap
  certainly_open: true
  machine_readable: true

- source_id: TAS-THELIST-EMERGENCY-ALERTS
  category: "Hazards & Warnings"
  subcategory: Emergency Management
  tags: [hazards, tas]
  jurisdiction_state: TAS
  endpoint_url: https://tas.example/query
  stream_type: arcgis
  certainly_open: true
  machine_readable: true

- source_id: VIC-FFMV-ACTIVE-FIRE
  category: Fire
  subcategory: Operational Fire Ground
  tags: [fire, vic]
  jurisdiction_state: VIC
  endpoint_url: https://ffm.example/fires.json
  stream_type: geojson
  certainly_open: true
  machine_readable: true
"""


def _handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "vic.example":
        return httpx.Response(200, content=(FIXTURES / "vic_events.geojson").read_bytes())
    if host == "qld.example":
        return httpx.Response(200, content=(FIXTURES / "qld_bushfire_capau.xml").read_bytes())
    if host == "ffm.example":
        return httpx.Response(200, content=b'{"type": "FeatureCollection", "features": []}')
    return httpx.Response(500)


@pytest.fixture
def client(tmp_path: Path):
    path = tmp_path / "registry.yaml"
    path.write_text(REGISTRY_YAML, encoding="utf-8")
    app.state.settings = Settings(REGISTRY_PATH=str(path), ALERTS_CACHE_TTL_S=0)
    app.state.registry = FileRegistry(path)
    app.state.client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    app.state.cache = MemoryAlertCache()
    app.state.health = HealthBoard()
    app.state.bus = EventBus()
    return TestClient(app)


def test_alerts_returns_feature_collection(client: TestClient) -> None:
    res = client.get("/alerts")
    assert res.status_code == 200
    body = res.json()
    assert body["type"] == "FeatureCollection"

    meta = body["metadata"]
    assert meta["total_alerts"] == 3
    assert meta["sources_count"] == 3
    assert meta["sources_ok"] == 2
    assert meta["stale"] is True
    assert "TAS-THELIST-EMERGENCY-ALERTS" in meta["error"]
    assert meta["failures"][0]["kind"] == "fetch_failure"
    assert meta["generated_at"].endswith("Z")

    ranks = [f["properties"]["severity_rank"] for f in body["features"]]
    assert ranks == sorted(ranks)
    props = body["features"][0]["properties"]
    assert props["updated_at"].endswith("Z")
    assert props["age_s"] >= 0
    cap = next(f for f in body["features"] if f["properties"]["source_id"] == "QLD-QFES-BUSHFIRE-CAPAU")
    assert cap["geometry"] is None


def test_alerts_filters_by_state(client: TestClient) -> None:
    body = client.get("/alerts", params={"state": "vic"}).json()
    assert body["metadata"]["sources_count"] == 1
    assert body["metadata"]["stale"] is False
    assert body["metadata"]["error"] is None
    assert {f["properties"]["state"] for f in body["features"]} == {"VIC"}


def test_alerts_explicit_category(client: TestClient) -> None:
    body = client.get("/alerts", params={"category": "Fire"}).json()
    assert body["metadata"]["sources_count"] == 1
    assert body["features"] == []


def test_alerts_tags_filter(client: TestClient) -> None:
    body = client.get("/alerts", params={"tags": "qld,nothing"}).json()
    assert body["metadata"]["sources_count"] == 1
    assert body["metadata"]["total_alerts"] == 1


def test_alerts_rejects_unknown_category(client: TestClient) -> None:
    res = client.get("/alerts", params={"category": "Space"})
    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "invalid_category"


def test_alerts_registry_unavailable(client: TestClient, tmp_path: Path) -> None:
    app.state.registry = FileRegistry(tmp_path / "gone.yaml")
    res = client.get("/alerts")
    assert res.status_code == 503
    assert res.json()["detail"]["code"] == "registry_unavailable"


def test_registry_endpoint(client: TestClient) -> None:
    body = client.get("/registry", params={"category": "Hazards & Warnings"}).json()
    assert body["count"] == 1
    entry = body["entries"][0]
    assert entry["source_id"] == "TAS-THELIST-EMERGENCY-ALERTS"
    assert entry["stream_type"] == "arcgis"
    assert entry["tags"] == ["hazards", "tas"]


def test_health_after_cycle(client: TestClient) -> None:
    client.get("/alerts")
    body = client.get("/health").json()
    assert body["last_cycle"]["sources_count"] == 3
    by_id = {s["source_id"]: s for s in body["sources"]}
    assert by_id["TAS-THELIST-EMERGENCY-ALERTS"]["last_status_code"] == 500
    assert by_id["TAS-THELIST-EMERGENCY-ALERTS"]["consecutive_failures"] == 1
    assert by_id["VIC-EMV-ALERTS-GEOJSON"]["last_alert_count"] == 2
