from __future__ import annotations

import math
import xml.etree.ElementTree as ET

from geo.geometry import close_ring, valid_lon_lat


def _text(el: ET.Element, name: str) -> str | None:
    value = el.findtext(f"{{*}}{name}")
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_pair(pair: str) -> list[float] | None:
    if "," not in pair:
        return None
    lat_str, lon_str = pair.split(",", maxsplit=1)
    try:
        lat = float(lat_str)
        lon = float(lon_str)
    except ValueError:
        return None
    if not valid_lon_lat(lon, lat):
        return None
    return [lon, lat]


def parse_cap_polygon(text: str | None) -> list[list[float]] | None:
    """CAP "lat,lon lat,lon ..." to a closed GeoJSON ring; None if malformed."""
    if not text or not text.strip():
        return None
    coords: list[list[float]] = []
    for pair in text.split():
        point = _parse_pair(pair)
        if point is None:
            return None
        coords.append(point)
    distinct = {tuple(c) for c in coords}
    if len(distinct) < 3:
        return None
    return close_ring(coords)


def parse_cap_circle(text: str | None) -> tuple[list[float], float] | None:
    """CAP "lat,lon radius_km" to (centre [lon, lat], radius); None if malformed."""
    if not text or not text.strip():
        return None
    parts = text.split()
    if len(parts) != 2:
        return None
    centre = _parse_pair(parts[0])
    if centre is None:
        return None
    try:
        radius = float(parts[1])
    except ValueError:
        return None
    if not math.isfinite(radius) or radius < 0:
        return None
    return centre, radius


def _area_geometry(info: ET.Element) -> tuple[dict | None, int]:
    polygons: list[list[list[float]]] = []
    circles: list[list[float]] = []
    malformed = 0
    for area in info.findall("{*}area"):
        for polygon_el in area.findall("{*}polygon"):
            ring = parse_cap_polygon(polygon_el.text)
            if ring is None:
                malformed += 1
                continue
            polygons.append(ring)
        for circle_el in area.findall("{*}circle"):
            circle = parse_cap_circle(circle_el.text)
            if circle is None:
                malformed += 1
                continue
            circles.append(circle[0])

    if len(polygons) == 1:
        return {"type": "Polygon", "coordinates": [polygons[0]]}, malformed
    if polygons:
        return {"type": "MultiPolygon", "coordinates": [[p] for p in polygons]}, malformed
    if circles:
        return {"type": "Point", "coordinates": circles[0]}, malformed
    return None, malformed


def parse_cap_alerts(data: bytes) -> list[dict]:
    root = ET.fromstring(data)
    alert_els: list[ET.Element] = []
    if root.tag.endswith("alert"):
        alert_els = [root]
    else:
        alert_els = root.findall(".//{*}alert")

    records: list[dict] = []
    for alert in alert_els:
        identifier = _text(alert, "identifier") or ""
        sent = _text(alert, "sent")
        status = _text(alert, "status")
        msg_type = _text(alert, "msgType")

        for index, info in enumerate(alert.findall("{*}info")):
            area_desc = None
            for area in info.findall("{*}area"):
                area_desc = area_desc or _text(area, "areaDesc")
            geom, malformed = _area_geometry(info)

            records.append(
                {
                    "identifier": identifier,
                    "info_index": index,
                    "sent": sent,
                    "status": status,
                    "msg_type": msg_type,
                    "category": _text(info, "category"),
                    "event": _text(info, "event"),
                    "headline": _text(info, "headline"),
                    "description": _text(info, "description") or "",
                    "instruction": _text(info, "instruction") or "",
                    "severity": _text(info, "severity"),
                    "urgency": _text(info, "urgency"),
                    "certainty": _text(info, "certainty"),
                    "onset": _text(info, "onset"),
                    "effective": _text(info, "effective"),
                    "expires": _text(info, "expires"),
                    "web": _text(info, "web"),
                    "area_desc": area_desc,
                    "geom": geom,
                    "malformed_areas": malformed,
                }
            )

    return records
