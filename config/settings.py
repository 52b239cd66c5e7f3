"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Persistence ──────────────────────────────────────────────────────
    persistence_backend: str = "local"   # "local" | "replicated"
    database_url: str = "sqlite+aiosqlite:///./connectors.db"
    database_echo: bool = False
    replica_id: str = "local"            # origin tag for writes into the shared map

    # ── Security Secrets ──────────────────────────────────────────────────
    token_encryption_key: str = ""       # urlsafe-base64 32-byte AES key for tokens at rest

    # ── Credential lifecycle ─────────────────────────────────────────────
    token_refresh_skew_seconds: int = 120
    token_validation_interval_seconds: int = 900   # 0 disables the background validator

    # ── OAuth providers ──────────────────────────────────────────────────
    google_client_id: str = ""
    google_client_secret: str = ""
    notion_client_id: str = ""
    notion_client_secret: str = ""
    provider_http_timeout: Optional[float] = None

    # ── Server ───────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


config = Settings()
