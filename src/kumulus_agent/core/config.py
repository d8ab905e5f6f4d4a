"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Agent settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KUMULUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "Kumulus Agent"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Identity (MNEMONIC is accepted for existing provider installs)
    mnemonic: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KUMULUS_MNEMONIC", "MNEMONIC", "mnemonic"),
    )

    # Control plane
    control_plane_url: str = "https://test-kumulus-backend.deno.dev/kumulus"
    providers_url: str | None = None  # defaults to {control_plane_url}/providers
    healthstats_url: str | None = None  # defaults to {control_plane_url}/healthstats
    ip_lookup_url: str = "https://ident.me"
    http_timeout_seconds: float = 30.0

    # Telemetry loop
    telemetry_enabled: bool = True
    telemetry_interval_seconds: int = 60

    # Container engine
    container_engine: str = "docker"
    base_image: str = "ubuntu:jammy"
    image_prefix: str = "ubuntu-vm"
    ssh_port_start: int = 2222
    ssh_port_range: int = 100
    container_ssh_port: int = 22
    apply_disk_limit: bool = False  # needs a storage driver with quota support
    strict_lifecycle_errors: bool = False

    # OpenTelemetry
    otel_enabled: bool = False
    otel_service_name: str = "kumulus-agent"
    otel_exporter_endpoint: str = "http://localhost:4317"

    @property
    def provider_lookup_url(self) -> str:
        """Base URL for provider lookups, keyed by signing address."""
        return (self.providers_url or f"{self.control_plane_url}/providers").rstrip("/")

    @property
    def health_report_url(self) -> str:
        """URL that ingests signed health and IP reports."""
        return self.healthstats_url or f"{self.control_plane_url}/healthstats"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
