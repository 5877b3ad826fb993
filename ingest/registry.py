from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import yaml

from ingest.errors import RegistryUnavailable
from ingest.models import (
    AccessLevel,
    ArcGISFieldMap,
    Category,
    JurisdictionState,
    RegistryFilter,
    SourceDescriptor,
    StreamType,
)
from normalize.normalize import SUPPORTED_STREAM_TYPES, resolve_arcgis_fields


logger = logging.getLogger(__name__)

# Substring match, first hit wins.
_JURISDICTION_MARKERS: tuple[tuple[str, JurisdictionState], ...] = (
    ("NSW", JurisdictionState.NSW),
    ("VIC", JurisdictionState.VIC),
    ("QLD", JurisdictionState.QLD),
    ("WA", JurisdictionState.WA),
    ("SA", JurisdictionState.SA),
    ("TAS", JurisdictionState.TAS),
    ("NT", JurisdictionState.NT),
    ("ACT", JurisdictionState.ACT),
)

_STREAM_TYPE_ALIASES = {
    "": StreamType.GEOJSON,
    "unknown": StreamType.GEOJSON,
    "georss": StreamType.RSS,
    "cap-au": StreamType.CAP,
    "capau": StreamType.CAP,
    "featureserver": StreamType.ARCGIS,
}

_SKIPPED_CATEGORIES = frozenset({"aviation"})


def map_jurisdiction(value: object) -> JurisdictionState:
    text = str(value or "")
    for marker, state in _JURISDICTION_MARKERS:
        if marker in text:
            return state
    return JurisdictionState.AUS


def map_stream_type(value: object) -> StreamType | None:
    text = str(value or "").strip().lower()
    alias = _STREAM_TYPE_ALIASES.get(text)
    if alias is not None:
        return alias
    try:
        return StreamType(text)
    except ValueError:
        return None


def _truthy(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def _split_tags(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        parts: Iterable[object] = value.split("|")
    elif isinstance(value, list):
        parts = value
    else:
        return ()
    return tuple(str(t).strip() for t in parts if str(t).strip())


def _arcgis_fields(value: object) -> ArcGISFieldMap | None:
    if not isinstance(value, dict):
        return None
    try:
        return ArcGISFieldMap(**{str(k): str(v) for k, v in value.items() if v is not None})
    except TypeError as e:
        raise ValueError(f"invalid arcgis_fields: {e}") from e


def descriptor_from_row(row: dict) -> SourceDescriptor | None:
    """Build a descriptor from one registry row; None for rows we do not ingest."""
    source_id = str(row.get("source_id") or row.get("item_id") or "").strip()
    category_text = str(row.get("category") or "").strip()
    endpoint_url = str(row.get("endpoint_url") or "").strip()
    if not source_id or not category_text:
        return None
    if category_text.casefold() in _SKIPPED_CATEGORIES:
        return None
    if not endpoint_url:
        return None

    try:
        category = Category(category_text)
    except ValueError:
        logger.warning("registry row %s has unknown category %r", source_id, category_text)
        return None

    stream_type = map_stream_type(row.get("stream_type"))
    if stream_type is None:
        logger.warning(
            "registry row %s has unknown stream type %r", source_id, row.get("stream_type")
        )
        return None

    try:
        access_level = AccessLevel(str(row.get("access_level") or "Open").strip().title())
    except ValueError:
        logger.warning(
            "registry row %s has unknown access level %r", source_id, row.get("access_level")
        )
        return None

    return SourceDescriptor(
        source_id=source_id,
        category=category,
        subcategory=str(row.get("subcategory") or "").strip(),
        tags=_split_tags(row.get("tags")),
        jurisdiction_state=map_jurisdiction(
            row.get("jurisdiction_state") or row.get("jurisdiction")
        ),
        endpoint_url=endpoint_url,
        stream_type=stream_type,
        access_level=access_level,
        certainly_open=_truthy(row.get("certainly_open")),
        machine_readable=_truthy(row.get("machine_readable")),
        format=str(row.get("format") or ""),
        arcgis_fields=_arcgis_fields(row.get("arcgis_fields")),
    )


def load_registry_entries(path: Path) -> list[SourceDescriptor]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise RegistryUnavailable(f"cannot read registry {path}: {e}") from e

    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("sources")
    if not isinstance(raw, list):
        raise RegistryUnavailable(f"invalid registry: {path}")

    entries: list[SourceDescriptor] = []
    seen: set[str] = set()
    for row in raw:
        if not isinstance(row, dict):
            raise RegistryUnavailable(f"invalid registry row in: {path}")
        try:
            descriptor = descriptor_from_row(row)
        except ValueError as e:
            logger.warning("skipping registry row %r: %s", row.get("source_id"), e)
            continue
        if descriptor is None:
            continue
        if descriptor.source_id in seen:
            logger.warning("duplicate registry source_id %s ignored", descriptor.source_id)
            continue
        seen.add(descriptor.source_id)
        entries.append(descriptor)
    return entries


def filter_registry(
    entries: Iterable[SourceDescriptor], flt: RegistryFilter | None
) -> list[SourceDescriptor]:
    out = list(entries)
    if flt is None:
        return out
    if flt.category is not None:
        out = [e for e in out if e.category == flt.category]
    if flt.state is not None:
        out = [e for e in out if e.jurisdiction_state == flt.state]
    if flt.machine_readable is not None:
        out = [e for e in out if e.machine_readable == flt.machine_readable]
    if flt.tags:
        wanted = set(flt.tags)
        out = [e for e in out if wanted.intersection(e.tags)]
    return out


def is_ingestible(descriptor: SourceDescriptor) -> bool:
    if not descriptor.machine_readable:
        return False
    if descriptor.access_level == AccessLevel.INTERNAL:
        return False
    if descriptor.stream_type not in SUPPORTED_STREAM_TYPES:
        logger.info(
            "source %s flagged: no normalizer for stream type %s",
            descriptor.source_id,
            descriptor.stream_type,
        )
        return False
    if descriptor.stream_type == StreamType.ARCGIS and resolve_arcgis_fields(descriptor) is None:
        logger.info(
            "source %s flagged: no arcgis field mapping for subcategory %r",
            descriptor.source_id,
            descriptor.subcategory,
        )
        return False
    return True


class FileRegistry:
    """Registry rows from a YAML/JSON file, reloaded when the file changes."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._mtime_ns: int | None = None
        self._entries: list[SourceDescriptor] = []

    def entries(self) -> list[SourceDescriptor]:
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except OSError as e:
            raise RegistryUnavailable(f"cannot read registry {self.path}: {e}") from e
        if mtime_ns != self._mtime_ns:
            self._entries = load_registry_entries(self.path)
            self._mtime_ns = mtime_ns
            logger.info("registry loaded from %s: %d entries", self.path, len(self._entries))
        return list(self._entries)

    def list_sources(self, flt: RegistryFilter | None = None) -> list[SourceDescriptor]:
        """Ingestible descriptors matching `flt`, in registry order."""
        return [d for d in filter_registry(self.entries(), flt) if is_ingestible(d)]
