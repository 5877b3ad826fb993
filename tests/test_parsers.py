import json
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from ingest.parsers.arcgis import parse_arcgis_features
from ingest.parsers.cap import parse_cap_alerts, parse_cap_circle, parse_cap_polygon
from ingest.parsers.geojson import parse_geojson
from ingest.parsers.rss import parse_rss


FIXTURES = Path(__file__).resolve().parent / "fixtures"


def test_parse_geojson_fixture() -> None:
    data = (FIXTURES / "vic_events.geojson").read_bytes()
    features = parse_geojson(data)
    assert len(features) == 2
    assert features[0]["id"] == "evt-1001"


def test_parse_geojson_single_feature() -> None:
    data = json.dumps({"type": "Feature", "id": 1, "geometry": None, "properties": {}}).encode()
    assert len(parse_geojson(data)) == 1


def test_parse_geojson_rejects_non_collection() -> None:
    with pytest.raises(ValueError):
        parse_geojson(b'{"type": "Point", "coordinates": [0, 0]}')
    with pytest.raises(ValueError):
        parse_geojson(b"[1, 2, 3]")
    with pytest.raises(ValueError):
        parse_geojson(b"<html>not json</html>")


def test_parse_rss_fixture() -> None:
    data = (FIXTURES / "qld_park_alerts.rss.xml").read_bytes()
    entries = parse_rss(data)
    assert len(entries) == 2
    assert entries[0]["id"] == "park-alert-1"
    assert entries[0]["categories"] == ["Fire"]
    assert entries[0]["georss"]["type"] == "Point"
    lon, lat = entries[0]["georss"]["coordinates"]
    assert lon == pytest.approx(151.95)
    assert lat == pytest.approx(-28.83)
    assert entries[1]["georss"] is None


def test_parse_rss_rejects_broken_xml() -> None:
    with pytest.raises(ValueError):
        parse_rss(b"<rss><channel><item><title>unterminated")


def test_parse_cap_one_record_per_info() -> None:
    data = (FIXTURES / "cap_multi_info.xml").read_bytes()
    records = parse_cap_alerts(data)
    assert [r["info_index"] for r in records] == [0, 1]
    assert records[0]["identifier"] == "BOM-IDQ20885"
    assert records[0]["geom"]["type"] == "MultiPolygon"
    assert records[1]["geom"] == {"type": "Point", "coordinates": [152.76, -27.61]}


def test_parse_cap_malformed_polygon_leaves_geometry_unset() -> None:
    data = (FIXTURES / "qld_bushfire_capau.xml").read_bytes()
    records = parse_cap_alerts(data)
    assert len(records) == 1
    assert records[0]["geom"] is None
    assert records[0]["malformed_areas"] == 1


def test_parse_cap_rejects_non_xml() -> None:
    with pytest.raises(ET.ParseError):
        parse_cap_alerts(b'{"not": "xml"}')


def test_parse_cap_polygon() -> None:
    ring = parse_cap_polygon("-27.4,152.9 -27.4,153.2 -27.6,153.2")
    assert ring == [[152.9, -27.4], [153.2, -27.4], [153.2, -27.6], [152.9, -27.4]]
    assert parse_cap_polygon("-27.4,152.9 -27.4,153.2") is None
    assert parse_cap_polygon("-27.4,152.9 junk -27.6,153.2 -27.7,153.0") is None
    assert parse_cap_polygon("-95.0,152.9 -27.4,153.2 -27.6,153.2") is None
    assert parse_cap_polygon("") is None


def test_parse_cap_circle() -> None:
    assert parse_cap_circle("-27.61,152.76 10") == ([152.76, -27.61], 10.0)
    assert parse_cap_circle("-27.61,152.76") is None
    assert parse_cap_circle("-27.61,152.76 -3") is None


def test_parse_arcgis_fixture() -> None:
    data = (FIXTURES / "tas_thelist.arcgis.json").read_bytes()
    wkid, records = parse_arcgis_features(data)
    assert wkid == 3857
    assert len(records) == 2
    assert records[0]["attributes"]["OBJECTID"] == 17
    assert records[1]["geometry"] is None


def test_parse_arcgis_error_object() -> None:
    data = json.dumps({"error": {"code": 400, "message": "Invalid query"}}).encode()
    with pytest.raises(ValueError, match="Invalid query"):
        parse_arcgis_features(data)


def test_parse_arcgis_requires_features() -> None:
    with pytest.raises(ValueError):
        parse_arcgis_features(b'{"type": "FeatureCollection"}')
