"""
Configuration management; all values are sourced from environment variables.
Provider descriptors themselves live in the provider store, not here.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CURLBRIDGE_",
        case_sensitive=False,
    )

    # ── Provider store ────────────────────────────────────────────────────────
    providers_file: str = "providers.json"

    # ── Upstream calls ────────────────────────────────────────────────────────
    # None means no deadline; the caller's own timeout context applies.
    upstream_timeout_seconds: Optional[float] = None
    error_preview_chars: int = 500
    probe_preview_chars: int = 200

    # ── Bearer tokens ─────────────────────────────────────────────────────────
    token_validity_hours: float = 23.0
    login_timeout_seconds: Optional[float] = 30.0

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_file: str = ""                            # empty = console only
    log_rotation_bytes: int = 10 * 1024 * 1024    # 10 MB
    log_backup_count: int = 5


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
