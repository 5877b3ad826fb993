from __future__ import annotations

import xml.sax

import feedparser


def _pairs_to_coords(nums: list[float]) -> list[list[float]]:
    return [[nums[i + 1], nums[i]] for i in range(0, len(nums) - 1, 2)]


def _georss_from_where(where: object) -> dict | None:
    if not isinstance(where, dict):
        return None
    geom_type = where.get("type")
    coords = where.get("coordinates")
    if geom_type == "Point" and coords:
        return {"type": "Point", "coordinates": [float(coords[0]), float(coords[1])]}
    if geom_type == "LineString" and coords:
        return {
            "type": "LineString",
            "coordinates": [[float(c[0]), float(c[1])] for c in coords],
        }
    if geom_type == "Polygon" and coords:
        return {
            "type": "Polygon",
            "coordinates": [[[float(c[0]), float(c[1])] for c in ring] for ring in coords],
        }
    return None


def _georss_from_text(entry) -> dict | None:
    georss_point = entry.get("georss_point")
    if georss_point:
        lat_str, lon_str = str(georss_point).split()[:2]
        return {"type": "Point", "coordinates": [float(lon_str), float(lat_str)]}

    georss_line = entry.get("georss_line")
    if georss_line:
        nums = [float(x) for x in str(georss_line).split()]
        return {"type": "LineString", "coordinates": _pairs_to_coords(nums)}

    georss_polygon = entry.get("georss_polygon")
    if georss_polygon:
        nums = [float(x) for x in str(georss_polygon).split()]
        coords = _pairs_to_coords(nums)
        if coords and coords[0] != coords[-1]:
            coords.append(coords[0])
        return {"type": "Polygon", "coordinates": [coords]}

    if entry.get("geo_lat") and entry.get("geo_long"):
        return {
            "type": "Point",
            "coordinates": [float(entry["geo_long"]), float(entry["geo_lat"])],
        }
    return None


def _georss(entry) -> dict | None:
    geom = _georss_from_where(entry.get("where"))
    if geom is not None:
        return geom
    try:
        return _georss_from_text(entry)
    except (TypeError, ValueError, IndexError):
        return None


def parse_rss(data: bytes) -> list[dict]:
    parsed = feedparser.parse(data)
    if parsed.bozo and isinstance(parsed.get("bozo_exception"), xml.sax.SAXException):
        raise ValueError(f"malformed feed: {parsed.bozo_exception}")
    if not parsed.version and not parsed.entries:
        raise ValueError("no feed or channel element found")

    records: list[dict] = []
    for entry in parsed.entries:
        content = None
        if "content" in entry and entry["content"]:
            content = entry["content"][0].get("value")

        categories = [
            str(t.get("term"))
            for t in (entry.get("tags") or [])
            if isinstance(t, dict) and t.get("term")
        ]

        records.append(
            {
                "id": entry.get("id") or entry.get("guid") or entry.get("link"),
                "link": entry.get("link"),
                "title": entry.get("title", ""),
                "summary": entry.get("summary", ""),
                "content": content,
                "published": entry.get("published"),
                "updated": entry.get("updated"),
                "categories": categories,
                "severity": entry.get("severity") or entry.get("cap_severity"),
                "georss": _georss(entry),
            }
        )
    return records
