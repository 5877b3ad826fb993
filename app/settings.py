from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    registry_path: Path = Field(
        default=Path("feeds/registry.yaml"), validation_alias="REGISTRY_PATH"
    )
    user_agent: str = Field(
        default="au-alerts-pipeline/0.1", validation_alias="USER_AGENT"
    )

    fetch_timeout_s: float = Field(default=10.0, gt=0, validation_alias="FETCH_TIMEOUT_S")
    cycle_deadline_s: float = Field(default=25.0, gt=0, validation_alias="CYCLE_DEADLINE_S")
    worker_pool_size: int = Field(default=8, ge=1, validation_alias="WORKER_POOL_SIZE")
    per_host_concurrency: int = Field(
        default=2, ge=1, validation_alias="PER_HOST_CONCURRENCY"
    )

    stale_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, validation_alias="STALE_THRESHOLD"
    )
    dedup_distance_m: float = Field(default=500.0, ge=0, validation_alias="DEDUP_DISTANCE_M")
    dedup_window_s: float = Field(default=3600.0, ge=0, validation_alias="DEDUP_WINDOW_S")

    cache_ttl_s: float = Field(default=30.0, ge=0, validation_alias="ALERTS_CACHE_TTL_S")
    poll_interval_s: float = Field(default=0.0, ge=0, validation_alias="POLL_INTERVAL_S")

    alert_categories: str = Field(
        default="Alerts,Hazards,Hazards & Warnings,Weather",
        validation_alias="ALERT_CATEGORIES",
    )

    host: str = Field(default="127.0.0.1", validation_alias="HOST")
    port: int = Field(default=8000, ge=1, le=65535, validation_alias="PORT")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
