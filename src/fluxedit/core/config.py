"""Configuration management for FluxEdit.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the FLUXEDIT_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (FLUXEDIT_* prefix)
2. .env file in the project root
3. Default values defined in FluxEditConfig

Example .env file:
    FLUXEDIT_API_ENDPOINT=http://localhost:7860/api/kontext
    FLUXEDIT_REQUEST_TIMEOUT=30
    FLUXEDIT_STATE_DIR=.fluxedit
    FLUXEDIT_FAL_KEY=...

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Services accept a config argument so tests can pass isolated instances.

Usage Example
-------------
    from fluxedit.core.config import config

    print(config.api_endpoint)
    print(config.state_file)

Credentials
-----------
``fal_key`` authenticates the hosted image-editing model and is only read by
the HTTP endpoint.  ``supabase_url`` / ``supabase_anon_key`` belong to the
hosted auth/database provider.  Their absence is reported through the
CONFIG_ERROR taxonomy code, never at import time.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FluxEditConfig(BaseSettings):
    """Main configuration for FluxEdit.

    Attributes
    ----------
    Request Settings:
        api_endpoint : str
            URL of the ``POST /api/kontext`` endpoint used by the client
        request_timeout : float
            Ceiling in seconds for one outbound processing call
        max_retries : int
            Attempts after which a retryable failure becomes terminal
        max_file_size : int
            Largest accepted upload in bytes

    Local State:
        state_dir : Path
            Directory holding the persisted session blob
        state_key : str
            Storage key the session blob is written under

    Resource Bounds:
        compression_cache_size : int
            Entries kept by the compression cache
        object_url_pool_size : int
            Temporary URIs kept before the oldest is revoked
        metrics_window : int
            Samples kept per timing metric
        params_debounce_ms : int
            Quiet period before parameter edits are published

    Upstream Service:
        fal_key : str | None
            Credential for the hosted image-editing model
        fal_model_url : str
            Synchronous endpoint of the hosted model
        upstream_timeout : float
            Ceiling in seconds for the endpoint's upstream call

    Hosted Auth/Database:
        supabase_url : str | None
        supabase_anon_key : str | None

    Server Settings:
        server_host : str
        server_port : int

    Examples
    --------
        >>> custom = FluxEditConfig(request_timeout=5, state_dir="/tmp/fluxedit")
        >>> custom.state_file.name
        'state.json'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLUXEDIT_",
        case_sensitive=False,
    )

    # Request settings
    api_endpoint: str = Field(
        default="http://localhost:7860/api/kontext",
        description="URL of the image-editing endpoint",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Seconds before an outbound processing call is aborted",
        gt=0,
    )
    max_retries: int = Field(
        default=3,
        description="Attempts after which a retryable failure is terminal",
        ge=0,
        le=10,
    )
    max_file_size: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted upload in bytes",
        gt=0,
    )

    # Local state
    state_dir: Path = Field(
        default=Path(".fluxedit"),
        description="Directory for the persisted session state",
    )
    state_key: str = Field(
        default="fal-integration-state",
        description="Storage key for the session blob",
    )

    # Resource bounds
    compression_cache_size: int = Field(default=50, ge=1)
    object_url_pool_size: int = Field(default=50, ge=1)
    metrics_window: int = Field(default=100, ge=1)
    params_debounce_ms: int = Field(default=300, ge=0)

    # Upstream image-editing service
    fal_key: str | None = Field(
        default=None,
        description="Credential for the hosted image-editing model",
    )
    fal_model_url: str = Field(
        default="https://fal.run/fal-ai/flux-pro/kontext",
        description="Synchronous endpoint of the hosted model",
    )
    upstream_timeout: float = Field(default=120.0, gt=0)

    # Hosted auth/database provider
    supabase_url: str | None = Field(default=None)
    supabase_anon_key: str | None = Field(default=None)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the state directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    @property
    def state_file(self) -> Path:
        """Path of the JSON file backing the local key/value store."""
        return self.state_dir / "state.json"

    @property
    def fal_configured(self) -> bool:
        return bool(self.fal_key and self.fal_key.strip())

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


# Global configuration instance, loaded from FLUXEDIT_* variables and .env.
config = FluxEditConfig()
