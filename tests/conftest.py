from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from ingest.models import (
    AccessLevel,
    Category,
    JurisdictionState,
    RawPayload,
    SourceDescriptor,
    StreamType,
)


FIXTURES = Path(__file__).resolve().parent / "fixtures"

FETCHED_AT = datetime(2025, 10, 10, 0, 0, tzinfo=UTC)


def _descriptor(
    source_id: str = "TEST-SOURCE",
    stream_type: StreamType = StreamType.GEOJSON,
    *,
    category: Category = Category.ALERTS,
    subcategory: str = "State Fire Alerts",
    state: JurisdictionState = JurisdictionState.VIC,
    url: str | None = None,
    access_level: AccessLevel = AccessLevel.OPEN,
    certainly_open: bool = True,
    machine_readable: bool = True,
    tags: tuple[str, ...] = ("alerts",),
) -> SourceDescriptor:
    return SourceDescriptor(
        source_id=source_id,
        category=category,
        subcategory=subcategory,
        tags=tags,
        jurisdiction_state=state,
        endpoint_url=url or f"https://{source_id.lower()}.example/feed",
        stream_type=stream_type,
        access_level=access_level,
        certainly_open=certainly_open,
        machine_readable=machine_readable,
    )


def _payload(content: bytes, source_id: str = "TEST-SOURCE") -> RawPayload:
    return RawPayload(
        source_id=source_id,
        content=content,
        content_type=None,
        status_code=200,
        elapsed_ms=12,
        fetched_at=FETCHED_AT,
    )


@pytest.fixture
def make_descriptor():
    return _descriptor


@pytest.fixture
def make_payload():
    return _payload
