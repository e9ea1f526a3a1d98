"""Application configuration from environment variables."""

import os
from functools import lru_cache
from os.path import abspath, dirname, join

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Find .env in the project root (one level up from opensesh/)
base_dir = dirname(dirname(abspath(__file__)))
env_file_path = join(base_dir, ".env")

if os.path.exists(env_file_path):
    load_dotenv(env_file_path)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=env_file_path,
        env_file_encoding="utf-8",
        env_prefix="OPENSESH_",
        extra="ignore",
        case_sensitive=False,
    )

    # Server
    app_name: str = "OpenSesh Orchestrator"
    debug: bool = False
    environment: str = "development"  # development, staging, production

    # Database (audit persistence)
    database_url: str = "sqlite+aiosqlite:///./opensesh.db"
    audit_persistence_enabled: bool = True

    # Skill catalog (YAML). Built-in catalog is used when unset.
    skill_catalog_path: str | None = None

    # Persisted execution + skill settings (JSON)
    state_file: str | None = None

    # Initial execution mode for threads without an explicit mode
    execution_mode: str | None = None  # assisted | autonomous

    # Run actions against the mock executor instead of registered handlers
    mock_execution: bool = False

    # Logging
    log_level: str = "INFO"
    syslog_host: str | None = None
    syslog_port: int = 514
    ntfy_url: str | None = None
    ntfy_topic: str | None = None

    @field_validator("execution_mode")
    @classmethod
    def validate_execution_mode(cls, v: str | None) -> str | None:
        if v is not None and v not in ("assisted", "autonomous"):
            raise ValueError(f"execution_mode must be assisted or autonomous, got {v!r}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    s = Settings()
    if s.debug:
        safe_url = s.database_url.split("@")[-1] if "@" in s.database_url else s.database_url
        print(f"DEBUG: database_url (masked host)={safe_url} state_file={s.state_file}")
    return s
