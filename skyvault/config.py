"""
Application configuration using pydantic-settings.
Loads from environment variables with .env file support.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (relational record store + SQL workspace persistence)
    database_url: str = "sqlite+aiosqlite:///./skyvault.db"

    # Record storage backend: sql, flatfile, memory
    storage_backend: str = "sql"
    flatfile_base_dir: str = "./data"

    # Working context persistence: memory, sql, file
    workspace_backend: str = "memory"
    workspace_dir: str = "./workspaces"
    default_workspace: str = "default"

    # Capture identity and default partition
    recorder_did: str = "did:web:skyvault.local"
    default_snapshot: str = "default"
    project: str = ""

    # Fetch collaborator: offline (store only) or appview (public XRPC)
    fetcher: str = "offline"
    appview_url: str = "https://public.api.bsky.app"
    fetch_timeout: float = 10.0

    # Application
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # API Settings
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Skyvault Social Graph Archive"
    version: str = "0.4.0"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
