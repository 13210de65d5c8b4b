"""Configuration management for the Arqia room redesign service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the ARQIA_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (ARQIA_* prefix)
2. .env file in the project root
3. Default values defined in ArqiaConfig

Example .env file:
    ARQIA_BACKEND=replicate
    ARQIA_REPLICATE_API_TOKEN=r8_xxxxx
    ARQIA_POLL_INTERVAL=2.0
    ARQIA_MAX_POLL_ATTEMPTS=60

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Components never read it implicitly: the relay and the CLI pass it into
:func:`arqia.core.backends.create_backend` and
:class:`arqia.core.tracker.JobTracker`, so tests can build their own
``ArqiaConfig`` instances freely.

Timeout Budget
--------------
Polling mode gives up after ``max_poll_attempts`` status queries spaced
``poll_interval`` seconds apart (60 x 2s by default, roughly two minutes).
Blocking mode uses ``blocking_timeout`` as an explicit deadline.  Both are
enforced client-side regardless of what the inference backend does.

Backends
--------
- ``replicate``: talk to the Replicate predictions API directly.  Requires
  ``replicate_api_token``; keep this server-side.
- ``relay``: talk to a self-hosted relay (``arqia-relay``) which holds the
  credentials.
- ``mock``: offline echo backend that returns the source photo.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ArqiaConfig(BaseSettings):
    """Main configuration for the Arqia redesign service.

    Attributes
    ----------
    Backend Selection:
        backend : Literal["replicate", "relay", "mock"]
            Which generation backend strategy to use
        replicate_api_token : str
            Replicate API token (``Authorization: Token ...``)
        replicate_api_url : str
            Base URL of the Replicate HTTP API
        replicate_model_version : str
            Model version hash sent with every prediction
        relay_url : str
            Base URL of a self-hosted relay's ``/api`` routes
        request_timeout : float
            Per-request HTTP timeout in seconds

    Job Tracking:
        poll_interval : float
            Seconds between status queries in polling mode
        max_poll_attempts : int
            Number of status queries before a job is declared timed out
        blocking_timeout : float
            Deadline in seconds for a blocking-mode generation
        mock_processing_polls : int
            Polls the mock backend reports ``processing`` before succeeding

    Input Validation:
        max_image_bytes : int
            Largest accepted source photo, in bytes

    Relay Server:
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        allowed_origins : list[str]
            CORS origins allowed to call the relay
        log_level : str
            Root logging level for the CLI entry point

    Examples
    --------
    Create a custom configuration:

        >>> custom_config = ArqiaConfig(
        ...     backend="mock",
        ...     poll_interval=0.5,
        ...     max_poll_attempts=10,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ARQIA_",
        case_sensitive=False,
    )

    # Backend selection
    backend: Literal["replicate", "relay", "mock"] = Field(
        default="replicate",
        description="Generation backend strategy (replicate, relay, or mock)",
    )
    replicate_api_token: str = Field(
        default="",
        description="Replicate API token; never ship this to clients",
    )
    replicate_api_url: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the Replicate API",
    )
    replicate_model_version: str = Field(
        default="39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b",
        description="SDXL img2img model version hash",
    )
    relay_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the self-hosted relay API",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Per-request HTTP timeout in seconds",
        gt=0,
    )

    # Job tracking
    poll_interval: float = Field(
        default=2.0,
        description="Seconds between status polls",
        ge=0,
    )
    max_poll_attempts: int = Field(
        default=60,
        description="Status polls before the job is declared timed out",
        ge=1,
    )
    blocking_timeout: float = Field(
        default=120.0,
        description="Deadline in seconds for blocking-mode generation",
        gt=0,
    )
    mock_processing_polls: int = Field(
        default=2,
        description="Polls the mock backend reports 'processing' before succeeding",
        ge=0,
    )

    # Input validation
    max_image_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted source photo in bytes",
        ge=1,
    )

    # Relay server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    allowed_origins: list[str] = Field(
        default=["*"],
        description="CORS origins allowed to call the relay",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level for the relay process",
    )

    @property
    def poll_budget_seconds(self) -> float:
        """Wall-clock budget implied by the polling settings."""
        return self.max_poll_attempts * self.poll_interval


# Global configuration instance
# Loads values from environment variables (ARQIA_* prefix) and .env file.
config = ArqiaConfig()
