"""
Configuration management for the Release Registry.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Every field can be overridden with a ``REGISTRY_``-prefixed environment
    variable (e.g. ``REGISTRY_LEDGER_URL``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="REGISTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Release Registry")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins.",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL used for links in notification e-mails.",
    )

    # Metadata index
    database_url: str = Field(default="sqlite:///./release_registry.db")

    # Artifact store
    storage_uri: str = Field(
        default="file://./packages-storage",
        description="Artifact storage root. Supported schemes: file://, memory://",
    )
    max_artifact_bytes: int = Field(default=100 * 1024 * 1024)

    # Ledger
    ledger_url: str = Field(
        default="memory://",
        description="Ledger gateway URL. memory:// runs an in-process ledger.",
    )
    ledger_identity: str = Field(
        default="Org1MSP",
        description="Identity stamped on writes by the in-process ledger.",
    )
    ledger_api_key: Optional[str] = Field(default=None)

    # Per-call timeouts
    artifact_timeout_seconds: float = Field(default=30.0)
    ledger_timeout_seconds: float = Field(default=15.0)
    index_timeout_seconds: float = Field(default=10.0)
    notification_timeout_seconds: float = Field(default=10.0)

    # Notifications
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)
    sender_email: str = Field(default="noreply@release-registry.example.com")
    sender_name: str = Field(default="Release Registry")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    def cors_origin_list(self) -> List[str]:
        """Parse ``cors_origins`` into a list, dropping empty entries."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
