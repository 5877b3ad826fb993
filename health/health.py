from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass
class SourceHealth:
    source_id: str
    last_fetch_at: str | None = None
    last_success_at: str | None = None
    last_error_at: str | None = None
    last_status_code: int | None = None
    last_fetch_ms: int | None = None
    last_alert_count: int = 0
    consecutive_failures: int = 0
    success_count: int = 0
    error_count: int = 0
    last_error: str | None = None


class HealthBoard:
    """Per-source fetch health, kept in memory for the /health endpoint."""

    def __init__(self) -> None:
        self._sources: dict[str, SourceHealth] = {}
        self.last_cycle: dict | None = None

    def _entry(self, source_id: str) -> SourceHealth:
        entry = self._sources.get(source_id)
        if entry is None:
            entry = SourceHealth(source_id=source_id)
            self._sources[source_id] = entry
        return entry

    def record_fetch_success(
        self,
        *,
        source_id: str,
        status_code: int | None,
        fetch_ms: int | None,
        alert_count: int,
    ) -> None:
        now_iso = _utc_now_iso()
        entry = self._entry(source_id)
        entry.last_fetch_at = now_iso
        entry.last_success_at = now_iso
        if status_code is not None:
            entry.last_status_code = status_code
        if fetch_ms is not None:
            entry.last_fetch_ms = fetch_ms
        entry.last_alert_count = alert_count
        entry.consecutive_failures = 0
        entry.success_count += 1
        entry.last_error = None

    def record_fetch_error(
        self,
        *,
        source_id: str,
        status_code: int | None,
        error: str,
    ) -> int:
        now_iso = _utc_now_iso()
        entry = self._entry(source_id)
        entry.last_fetch_at = now_iso
        entry.last_error_at = now_iso
        if status_code is not None:
            entry.last_status_code = status_code
        entry.consecutive_failures += 1
        entry.error_count += 1
        entry.last_error = error
        return entry.consecutive_failures

    def get(self, source_id: str) -> SourceHealth | None:
        return self._sources.get(source_id)

    def snapshot(self) -> list[dict]:
        return [asdict(e) for e in sorted(self._sources.values(), key=lambda e: e.source_id)]
