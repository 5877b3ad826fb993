from __future__ import annotations

import json


def parse_geojson(data: bytes) -> list[dict]:
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("GeoJSON document is not an object")
    if doc.get("type") == "Feature":
        return [doc]
    if doc.get("type") != "FeatureCollection":
        raise ValueError(f"unexpected GeoJSON type: {doc.get('type')!r}")
    features = doc.get("features") or []
    if not isinstance(features, list):
        raise ValueError("FeatureCollection.features is not a list")
    return [f for f in features if isinstance(f, dict)]
