from __future__ import annotations

import math


_EARTH_RADIUS_M = 6378137.0

WGS84_WKIDS = frozenset({4326, 4283, 4939, 7844})
WEB_MERCATOR_WKIDS = frozenset({3857, 102100, 102113, 900913})


def valid_lon_lat(lon: float, lat: float) -> bool:
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


def _valid_position(pos: object) -> bool:
    if not isinstance(pos, (list, tuple)) or len(pos) < 2:
        return False
    lon, lat = pos[0], pos[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return False
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return False
    return valid_lon_lat(float(lon), float(lat))


def _valid_positions(coords: object, depth: int) -> bool:
    if depth == 0:
        return _valid_position(coords)
    if not isinstance(coords, (list, tuple)) or not coords:
        return False
    return all(_valid_positions(c, depth - 1) for c in coords)


_POSITION_DEPTH = {
    "Point": 0,
    "MultiPoint": 1,
    "LineString": 1,
    "MultiLineString": 2,
    "Polygon": 2,
    "MultiPolygon": 3,
}


def validate_geometry(geom: object) -> dict | None:
    """Return the geometry if every position is a valid WGS84 lon/lat pair."""
    if not isinstance(geom, dict):
        return None
    geom_type = geom.get("type")
    if geom_type == "GeometryCollection":
        parts = geom.get("geometries")
        if not isinstance(parts, list) or not parts:
            return None
        if all(validate_geometry(p) is not None for p in parts):
            return geom
        return None
    depth = _POSITION_DEPTH.get(str(geom_type))
    if depth is None:
        return None
    if not _valid_positions(geom.get("coordinates"), depth):
        return None
    return geom


def web_mercator_to_wgs84(x: float, y: float) -> tuple[float, float]:
    lon = math.degrees(x / _EARTH_RADIUS_M)
    lat = math.degrees(2.0 * math.atan(math.exp(y / _EARTH_RADIUS_M)) - math.pi / 2.0)
    return (lon, lat)


def _iter_positions(geom: dict):
    geom_type = geom.get("type")
    if geom_type == "GeometryCollection":
        for part in geom.get("geometries") or []:
            yield from _iter_positions(part)
        return
    depth = _POSITION_DEPTH.get(str(geom_type))
    if depth is None:
        return

    def walk(coords, d):
        if d == 0:
            yield (float(coords[0]), float(coords[1]))
            return
        for c in coords:
            yield from walk(c, d - 1)

    yield from walk(geom.get("coordinates"), depth)


def bbox_from_geojson(geom: dict) -> tuple[float, float, float, float] | None:
    points = list(_iter_positions(geom))
    if not points:
        return None
    min_lon = min(p[0] for p in points)
    min_lat = min(p[1] for p in points)
    max_lon = max(p[0] for p in points)
    max_lat = max(p[1] for p in points)
    return (min_lon, min_lat, max_lon, max_lat)


def centroid(geom: dict | None) -> tuple[float, float] | None:
    """Bounding-box centre as (lat, lon)."""
    if geom is None:
        return None
    bbox = bbox_from_geojson(geom)
    if bbox is None:
        return None
    min_lon, min_lat, max_lon, max_lat = bbox
    return ((min_lat + max_lat) / 2.0, (min_lon + max_lon) / 2.0)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371000.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * r * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def close_ring(coords: list[list[float]]) -> list[list[float]]:
    if coords and coords[0] != coords[-1]:
        coords.append(list(coords[0]))
    return coords


def _reproject(x: object, y: object, wkid: int) -> list[float] | None:
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        return None
    if wkid in WEB_MERCATOR_WKIDS:
        lon, lat = web_mercator_to_wgs84(float(x), float(y))
    elif wkid in WGS84_WKIDS:
        lon, lat = float(x), float(y)
    else:
        return None
    if not valid_lon_lat(lon, lat):
        return None
    return [lon, lat]


def _reproject_path(path: object, wkid: int) -> list[list[float]] | None:
    if not isinstance(path, list) or not path:
        return None
    out: list[list[float]] = []
    for pos in path:
        if not isinstance(pos, (list, tuple)) or len(pos) < 2:
            return None
        point = _reproject(pos[0], pos[1], wkid)
        if point is None:
            return None
        out.append(point)
    return out


def arcgis_geometry_to_geojson(geom: dict | None, wkid: int) -> dict | None:
    """ArcGIS JSON geometry in `wkid` to a WGS84 GeoJSON geometry.

    Returns None for empty geometries, unsupported spatial references and
    coordinates that fall outside WGS84 bounds after reprojection.
    """
    if not geom:
        return None

    if "x" in geom and "y" in geom:
        point = _reproject(geom.get("x"), geom.get("y"), wkid)
        if point is None:
            return None
        return {"type": "Point", "coordinates": point}

    if isinstance(geom.get("points"), list):
        points = _reproject_path(geom["points"], wkid)
        if points is None:
            return None
        if len(points) == 1:
            return {"type": "Point", "coordinates": points[0]}
        return {"type": "MultiPoint", "coordinates": points}

    if isinstance(geom.get("paths"), list):
        paths = [_reproject_path(p, wkid) for p in geom["paths"]]
        if not paths or any(p is None or len(p) < 2 for p in paths):
            return None
        if len(paths) == 1:
            return {"type": "LineString", "coordinates": paths[0]}
        return {"type": "MultiLineString", "coordinates": paths}

    if isinstance(geom.get("rings"), list):
        rings = [_reproject_path(r, wkid) for r in geom["rings"]]
        if not rings or any(r is None or len(r) < 3 for r in rings):
            return None
        return {"type": "Polygon", "coordinates": [close_ring(r) for r in rings]}

    return None
