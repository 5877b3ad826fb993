from __future__ import annotations

import json


def _wkid(spatial_reference: object) -> int | None:
    if not isinstance(spatial_reference, dict):
        return None
    for key in ("latestWkid", "wkid"):
        value = spatial_reference.get(key)
        if isinstance(value, int):
            return value
    return None


def parse_arcgis_features(data: bytes) -> tuple[int | None, list[dict]]:
    """Split a FeatureServer query response into (wkid, features)."""
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("ArcGIS response is not an object")
    error = doc.get("error")
    if isinstance(error, dict):
        raise ValueError(
            f"ArcGIS error {error.get('code')}: {error.get('message') or ''}".strip()
        )
    features = doc.get("features")
    if not isinstance(features, list):
        raise ValueError("ArcGIS response has no features array")

    wkid = _wkid(doc.get("spatialReference"))
    records: list[dict] = []
    for feature in features:
        if not isinstance(feature, dict):
            continue
        attributes = feature.get("attributes")
        geometry = feature.get("geometry")
        records.append(
            {
                "attributes": attributes if isinstance(attributes, dict) else {},
                "geometry": geometry if isinstance(geometry, dict) else None,
                "wkid": _wkid((geometry or {}).get("spatialReference"))
                if isinstance(geometry, dict)
                else None,
            }
        )
    return wkid, records
