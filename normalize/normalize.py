from __future__ import annotations

import hashlib
import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from geo.geometry import WGS84_WKIDS, arcgis_geometry_to_geojson, validate_geometry
from ingest.errors import NormalizationFailure, UnsupportedFormat
from ingest.models import (
    ArcGISFieldMap,
    CanonicalAlert,
    Confidence,
    RawPayload,
    SourceDescriptor,
    StreamType,
)
from ingest.parsers.arcgis import parse_arcgis_features
from ingest.parsers.cap import parse_cap_alerts
from ingest.parsers.geojson import parse_geojson
from ingest.parsers.rss import parse_rss
from normalize.severity import (
    RANK_LABELS,
    RSS_DEFAULT_CONFIDENCE,
    RSS_DEFAULT_RANK,
    cap_confidence,
    cap_rank_and_confidence,
    descriptor_ceiling,
    parse_confidence,
    rank_for_warning_level,
    rank_from_keywords,
)


logger = logging.getLogger(__name__)

Normalizer = Callable[[RawPayload, SourceDescriptor], list[CanonicalAlert]]

# Exceptions a single malformed record may raise; anything else propagates.
_RECORD_ERRORS = (TypeError, ValueError, KeyError, AttributeError, IndexError)
# Whole-payload decode errors, including unknown declared encodings and
# documents nested too deeply to parse.
_PAYLOAD_ERRORS = (ValueError, UnicodeDecodeError, LookupError, RecursionError)


def stable_alert_id(source_id: str, native_id: str) -> str:
    h = hashlib.sha256()
    h.update(source_id.encode("utf-8"))
    h.update(b"\x1f")
    h.update(native_id.encode("utf-8"))
    return h.hexdigest()[:24]


def _from_epoch(value: float) -> datetime:
    # Anything this large is epoch milliseconds.
    if abs(value) > 1e11:
        value = value / 1000.0
    return datetime.fromtimestamp(value, tz=UTC)


def parse_timestamp(value: object) -> datetime | None:
    """Parse ISO-8601, RFC-822 or epoch (s or ms) timestamps to aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _from_epoch(float(value))
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        try:
            return _from_epoch(float(text))
        except (OverflowError, OSError, ValueError):
            return None

    dt = None
    try:
        dt = datetime.fromisoformat(
            text.removesuffix("Z") + "+00:00" if text.endswith("Z") else text
        )
    except ValueError:
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz=UTC)


def _first(mapping: dict, *keys: str) -> object:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _str_or_none(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _make_alert(
    descriptor: SourceDescriptor,
    *,
    native_id: str,
    title: str,
    description: str,
    severity_label: str | None,
    rank: int | None,
    confidence: Confidence,
    issued_at: datetime,
    updated_at: datetime,
    expires_at: datetime | None,
    url: str | None,
    geometry: dict | None,
    hazard_type: str | None,
    subcategory: str | None = None,
) -> CanonicalAlert:
    if rank is None:
        rank = 4
        confidence = cap_confidence(confidence, Confidence.LOW)
    confidence = cap_confidence(confidence, descriptor_ceiling(descriptor))

    return CanonicalAlert(
        id=stable_alert_id(descriptor.source_id, native_id),
        source_id=descriptor.source_id,
        category=str(descriptor.category),
        subcategory=subcategory or descriptor.subcategory,
        tags=descriptor.tags,
        state=str(descriptor.jurisdiction_state),
        hazard_type=hazard_type or descriptor.subcategory or "Hazard",
        severity=severity_label or RANK_LABELS[rank],
        severity_rank=rank,
        title=title,
        description=description,
        issued_at=issued_at,
        updated_at=updated_at,
        expires_at=expires_at,
        url=url,
        confidence=confidence,
        geometry=geometry,
    )


# GeoJSON


def _geojson_feature_to_alert(
    feature: dict, payload: RawPayload, descriptor: SourceDescriptor
) -> CanonicalAlert | None:
    props = feature.get("properties") or {}
    if not isinstance(props, dict):
        props = {}

    native_id = _str_or_none(
        _first(feature, "id") or _first(props, "id", "guid", "identifier")
    )
    if native_id is None:
        return None

    severity_label = _str_or_none(
        _first(props, "severity", "warning_level", "warningLevel", "alert_level", "alertLevel")
    )
    issued_at = (
        parse_timestamp(
            _first(props, "issued_at", "issued", "published", "pubDate", "created", "sent", "timestamp")
        )
        or payload.fetched_at
    )
    updated_at = (
        parse_timestamp(_first(props, "updated_at", "updated", "lastUpdated", "modified"))
        or issued_at
    )

    return _make_alert(
        descriptor,
        native_id=native_id,
        title=str(_first(props, "title", "name", "headline") or "Alert"),
        description=str(_first(props, "description", "summary") or ""),
        severity_label=severity_label,
        rank=rank_for_warning_level(severity_label),
        confidence=parse_confidence(props.get("confidence"), Confidence.MEDIUM),
        issued_at=issued_at,
        updated_at=updated_at,
        expires_at=parse_timestamp(_first(props, "expires_at", "expires")),
        url=_str_or_none(_first(props, "url", "link", "web")),
        geometry=validate_geometry(feature.get("geometry")),
        hazard_type=_str_or_none(_first(props, "hazard_type", "event", "type")),
    )


def normalize_geojson(payload: RawPayload, descriptor: SourceDescriptor) -> list[CanonicalAlert]:
    try:
        features = parse_geojson(payload.content)
    except _PAYLOAD_ERRORS as e:
        raise NormalizationFailure(descriptor.source_id, f"invalid geojson: {e}") from e

    alerts: list[CanonicalAlert] = []
    for feature in features:
        try:
            alert = _geojson_feature_to_alert(feature, payload, descriptor)
        except _RECORD_ERRORS as e:
            logger.debug("dropping geojson feature from %s: %s", descriptor.source_id, e)
            continue
        if alert is None:
            logger.debug("dropping geojson feature without id from %s", descriptor.source_id)
            continue
        alerts.append(alert)
    return alerts


# RSS / GeoRSS


def _rss_record_to_alert(
    record: dict, payload: RawPayload, descriptor: SourceDescriptor
) -> CanonicalAlert | None:
    native_id = _str_or_none(record.get("id") or record.get("link") or record.get("title"))
    if native_id is None:
        return None

    title = str(record.get("title") or "Unknown Alert")
    explicit = _str_or_none(record.get("severity"))
    if explicit is not None:
        rank = rank_for_warning_level(explicit)
        confidence = Confidence.MEDIUM
        severity_label = explicit
    else:
        rank = rank_from_keywords(title, *record.get("categories", []))
        if rank is None:
            rank = RSS_DEFAULT_RANK
        confidence = RSS_DEFAULT_CONFIDENCE
        severity_label = RANK_LABELS[rank]

    issued_at = (
        parse_timestamp(record.get("published"))
        or parse_timestamp(record.get("updated"))
        or payload.fetched_at
    )
    updated_at = parse_timestamp(record.get("updated")) or issued_at

    return _make_alert(
        descriptor,
        native_id=native_id,
        title=title,
        description=str(record.get("summary") or record.get("content") or ""),
        severity_label=severity_label,
        rank=rank,
        confidence=confidence,
        issued_at=issued_at,
        updated_at=updated_at,
        expires_at=None,
        url=_str_or_none(record.get("link")),
        geometry=validate_geometry(record.get("georss")),
        hazard_type=None,
    )


def normalize_rss(payload: RawPayload, descriptor: SourceDescriptor) -> list[CanonicalAlert]:
    try:
        records = parse_rss(payload.content)
    except _PAYLOAD_ERRORS as e:
        raise NormalizationFailure(descriptor.source_id, f"invalid rss: {e}") from e

    alerts: list[CanonicalAlert] = []
    for record in records:
        try:
            alert = _rss_record_to_alert(record, payload, descriptor)
        except _RECORD_ERRORS as e:
            logger.debug("dropping rss item from %s: %s", descriptor.source_id, e)
            continue
        if alert is not None:
            alerts.append(alert)
    return alerts


# CAP


# Test, Exercise, System and Draft messages are not public warnings.
LIVE_CAP_STATUSES = frozenset({"actual"})


def _cap_record_to_alert(
    record: dict, payload: RawPayload, descriptor: SourceDescriptor
) -> CanonicalAlert | None:
    if not record["identifier"]:
        return None
    if (record.get("msg_type") or "").casefold() == "cancel":
        return None
    if (record.get("status") or "Actual").casefold() not in LIVE_CAP_STATUSES:
        return None

    rank, confidence, mapped = cap_rank_and_confidence(
        record.get("severity"), record.get("urgency"), record.get("certainty")
    )
    sent = parse_timestamp(record.get("sent"))
    issued_at = (
        parse_timestamp(record.get("onset"))
        or parse_timestamp(record.get("effective"))
        or sent
        or payload.fetched_at
    )

    if record.get("malformed_areas"):
        logger.debug(
            "cap %s from %s: %d malformed area shape(s) ignored",
            record["identifier"],
            descriptor.source_id,
            record["malformed_areas"],
        )

    return _make_alert(
        descriptor,
        native_id=f"{record['identifier']}_{record['info_index']}",
        title=str(record.get("headline") or record.get("event") or "Emergency Alert"),
        description=str(
            record.get("description") or record.get("instruction") or record.get("area_desc") or ""
        ),
        severity_label=record.get("severity") or "Unknown",
        rank=rank if mapped else None,
        confidence=confidence,
        issued_at=issued_at,
        updated_at=sent or issued_at,
        expires_at=parse_timestamp(record.get("expires")),
        url=record.get("web"),
        geometry=validate_geometry(record.get("geom")),
        hazard_type=record.get("event") or record.get("category"),
        subcategory=record.get("event"),
    )


def normalize_cap(payload: RawPayload, descriptor: SourceDescriptor) -> list[CanonicalAlert]:
    try:
        records = parse_cap_alerts(payload.content)
    except (ET.ParseError, *_PAYLOAD_ERRORS) as e:
        raise NormalizationFailure(descriptor.source_id, f"invalid cap xml: {e}") from e

    alerts: list[CanonicalAlert] = []
    for record in records:
        try:
            alert = _cap_record_to_alert(record, payload, descriptor)
        except _RECORD_ERRORS as e:
            logger.debug("dropping cap info from %s: %s", descriptor.source_id, e)
            continue
        if alert is not None:
            alerts.append(alert)
    return alerts


# ArcGIS FeatureServer

# Services label fields differently; keyed by descriptor subcategory (casefolded).
ARCGIS_FIELD_MAPS: dict[str, ArcGISFieldMap] = {
    "emergency management": ArcGISFieldMap(
        title="ALERT_TYPE",
        severity="ALERT_TYPE",
        timestamp="EFFECTIVE_FROM_DATE",
        description="FULL_DESCRIPTION",
        url="TASALERT_LINK",
        expires="EXPIRES_DATE",
        hazard_type="EVENT",
    ),
    "state fire alerts": ArcGISFieldMap(
        title="TITLE",
        severity="ALERT_LEVEL",
        timestamp="UPDATED_DATE",
        description="DESCRIPTION",
        url="URL",
        hazard_type="INCIDENT_TYPE",
    ),
    "road incidents": ArcGISFieldMap(
        title="EventName",
        severity="Impact",
        timestamp="LastUpdated",
        id="OBJECTID",
        description="Description",
        hazard_type="EventType",
    ),
    "hazards": ArcGISFieldMap(
        title="title",
        severity="severity",
        timestamp="pubDate",
        description="description",
        url="link",
    ),
}


def resolve_arcgis_fields(descriptor: SourceDescriptor) -> ArcGISFieldMap | None:
    if descriptor.arcgis_fields is not None:
        return descriptor.arcgis_fields
    return ARCGIS_FIELD_MAPS.get(descriptor.subcategory.strip().casefold())


def _arcgis_record_to_alert(
    record: dict,
    wkid: int,
    fields: ArcGISFieldMap,
    payload: RawPayload,
    descriptor: SourceDescriptor,
) -> CanonicalAlert | None:
    attrs = record["attributes"]
    native_id = _str_or_none(_first(attrs, fields.id, "OBJECTID", "GlobalID", "FID"))
    if native_id is None:
        return None

    severity_label = _str_or_none(attrs.get(fields.severity))
    rank = rank_for_warning_level(severity_label)
    if rank is None and severity_label is not None:
        rank = rank_from_keywords(severity_label)

    issued_at = parse_timestamp(attrs.get(fields.timestamp)) or payload.fetched_at

    return _make_alert(
        descriptor,
        native_id=native_id,
        title=str(attrs.get(fields.title) or "Hazards Update"),
        description=str(attrs.get(fields.description) or "") if fields.description else "",
        severity_label=severity_label,
        rank=rank,
        confidence=Confidence.MEDIUM,
        issued_at=issued_at,
        updated_at=issued_at,
        expires_at=parse_timestamp(attrs.get(fields.expires)) if fields.expires else None,
        url=_str_or_none(attrs.get(fields.url)) if fields.url else None,
        geometry=arcgis_geometry_to_geojson(record["geometry"], record["wkid"] or wkid),
        hazard_type=_str_or_none(attrs.get(fields.hazard_type)) if fields.hazard_type else None,
    )


def normalize_arcgis(payload: RawPayload, descriptor: SourceDescriptor) -> list[CanonicalAlert]:
    fields = resolve_arcgis_fields(descriptor)
    if fields is None:
        raise NormalizationFailure(
            descriptor.source_id,
            f"no arcgis field mapping for subcategory {descriptor.subcategory!r}",
        )
    try:
        wkid, records = parse_arcgis_features(payload.content)
    except _PAYLOAD_ERRORS as e:
        raise NormalizationFailure(descriptor.source_id, f"invalid arcgis json: {e}") from e

    if wkid is None:
        wkid = 4326
    elif wkid not in WGS84_WKIDS:
        logger.debug("reprojecting %s from wkid %d", descriptor.source_id, wkid)

    alerts: list[CanonicalAlert] = []
    for record in records:
        try:
            alert = _arcgis_record_to_alert(record, wkid, fields, payload, descriptor)
        except _RECORD_ERRORS as e:
            logger.debug("dropping arcgis feature from %s: %s", descriptor.source_id, e)
            continue
        if alert is not None:
            alerts.append(alert)
    return alerts


NORMALIZERS: dict[StreamType, Normalizer] = {
    StreamType.GEOJSON: normalize_geojson,
    StreamType.RSS: normalize_rss,
    StreamType.CAP: normalize_cap,
    StreamType.ARCGIS: normalize_arcgis,
}

SUPPORTED_STREAM_TYPES: frozenset[StreamType] = frozenset(NORMALIZERS)


def normalizer_for(descriptor: SourceDescriptor) -> Normalizer:
    normalizer = NORMALIZERS.get(descriptor.stream_type)
    if normalizer is None:
        raise UnsupportedFormat(
            descriptor.source_id, f"no normalizer for stream type {descriptor.stream_type}"
        )
    return normalizer
