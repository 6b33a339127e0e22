"""Configuration management for outlook-email.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the OUTLOOK_EMAIL_ prefix (e.g., OUTLOOK_EMAIL_STORAGE_DIR).
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTLOOK_EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Graph API Configuration
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Base URL of the mailbox REST API",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout for mailbox API requests in seconds",
    )
    folder_page_size: int = Field(
        default=200,
        description="Page size used when listing mail folders",
    )
    message_page_size: int = Field(
        default=50,
        description="Page size used when listing messages",
    )

    # Authentication
    token_command: str | None = Field(
        default=None,
        description=(
            "Shell command that prints 'TOKEN=<access token>' on stdout. "
            "Used whenever no valid cached token is available."
        ),
    )
    access_token: str | None = Field(
        default=None,
        description="Static access token; takes precedence over token_command",
    )
    token_cache_path: Path = Field(
        default=Path(".tokens.yaml"),
        description="Path to the YAML token cache file",
    )
    token_expiry_buffer_seconds: int = Field(
        default=300,
        description="Cached tokens expiring sooner than this are refreshed",
    )

    # Local cache
    storage_dir: Path = Field(
        default=Path("storage"),
        description="Directory holding one cached file per email",
    )
    pull_archive_folder: str = Field(
        default="Processed",
        description="Folder that pulled emails are moved to after caching",
    )
    list_default_limit: int = Field(
        default=10,
        description="Default number of cached emails shown by 'list'",
    )
    search_default_limit: int = Field(
        default=10,
        description="Default number of results returned by 'search'",
    )

    # Application Configuration
    log_level: str = Field(
        default="WARNING",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
