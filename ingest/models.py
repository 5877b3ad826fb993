from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ingest.errors import PipelineError


class Category(StrEnum):
    ALERTS = "Alerts"
    FIRE = "Fire"
    FLOOD = "Flood"
    GROUND = "Ground"
    COMMUNICATIONS = "Communications"
    HAZARDS = "Hazards"
    HAZARDS_WARNINGS = "Hazards & Warnings"
    WEATHER = "Weather"
    TRANSPORT = "Transport"


class JurisdictionState(StrEnum):
    NSW = "NSW"
    VIC = "VIC"
    QLD = "QLD"
    WA = "WA"
    SA = "SA"
    TAS = "TAS"
    NT = "NT"
    ACT = "ACT"
    AUS = "AUS"


class StreamType(StrEnum):
    GEOJSON = "geojson"
    RSS = "rss"
    CAP = "cap"
    ARCGIS = "arcgis"
    JSON = "json"
    RADIO = "radio"


class AccessLevel(StrEnum):
    OPEN = "Open"
    PARTIAL = "Partial"
    INTERNAL = "Internal"


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class ArcGISFieldMap:
    """Attribute names an ArcGIS service uses for the fields we need."""

    title: str
    severity: str
    timestamp: str
    id: str = "OBJECTID"
    description: str | None = None
    url: str | None = None
    expires: str | None = None
    hazard_type: str | None = None


@dataclass(frozen=True)
class SourceDescriptor:
    source_id: str
    category: Category
    subcategory: str
    tags: tuple[str, ...]
    jurisdiction_state: JurisdictionState
    endpoint_url: str
    stream_type: StreamType
    access_level: AccessLevel
    certainly_open: bool
    machine_readable: bool
    format: str = ""
    arcgis_fields: ArcGISFieldMap | None = None


@dataclass(frozen=True)
class RegistryFilter:
    category: Category | None = None
    state: JurisdictionState | None = None
    machine_readable: bool | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class RawPayload:
    source_id: str
    content: bytes
    content_type: str | None
    status_code: int
    elapsed_ms: int
    fetched_at: datetime
    final_url: str = ""
    redirects: tuple[str, ...] = ()
    max_age_s: int | None = None


@dataclass(frozen=True)
class CanonicalAlert:
    id: str
    source_id: str
    category: str
    subcategory: str
    tags: tuple[str, ...]
    state: str
    hazard_type: str
    severity: str
    severity_rank: int
    title: str
    description: str
    issued_at: datetime
    updated_at: datetime
    confidence: Confidence
    expires_at: datetime | None = None
    url: str | None = None
    geometry: dict | None = None
    merged_source_ids: tuple[str, ...] = ()
    merged_alert_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.severity_rank not in (1, 2, 3, 4):
            raise ValueError(f"severity_rank out of range: {self.severity_rank}")
        if not self.id:
            raise ValueError("alert id must not be empty")


@dataclass(frozen=True)
class SourceResult:
    source_id: str
    alerts: tuple[CanonicalAlert, ...] = ()
    error: PipelineError | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SourceFailure:
    source_id: str
    kind: str
    reason: str


@dataclass(frozen=True)
class AggregationResult:
    alerts: tuple[CanonicalAlert, ...]
    sources_count: int
    sources_ok: int
    stale: bool
    generated_at: datetime
    error: str | None = None
    failures: tuple[SourceFailure, ...] = field(default_factory=tuple)

    @property
    def total_alerts(self) -> int:
        return len(self.alerts)
