from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "quotacore"
    log_level: str = "INFO"

    # Select the storage provider: "memory" loses state on restart, "file" snapshots it.
    state_backend: str = "memory"
    # Snapshot path for the file provider; parent directories are created on demand.
    state_file_path: str = "./artifacts/runtime-state.json"
    # Lifetime of cached decisions keyed by client request ids.
    idempotency_ttl_seconds: int = 600
    # Page sizes for the audit listing route.
    audit_default_page_size: int = 50
    audit_max_page_size: int = 500


@lru_cache
def get_settings() -> Settings:
    return Settings()
