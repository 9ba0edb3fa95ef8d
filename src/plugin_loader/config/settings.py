"""Configuration settings for the plugin loader.

This module defines a Pydantic ``BaseSettings`` model used to configure the
runtime via environment variables and a ``.env`` file. Environment variables
are read with the ``PLUGIN_LOADER_`` prefix (case-insensitive), and field
descriptions serve as the authoritative documentation for each setting.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings with environment variable support and validation.

    Notes:
    - Values can be provided via environment variables with prefix
      ``PLUGIN_LOADER_`` (e.g., ``PLUGIN_LOADER_TESTGROUP=42``), or from a
      ``.env`` file.
    - Configuration is case-insensitive and validates assignments at runtime.
    """

    app_name: str = Field(default="Plugin Loader", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")

    event_prefix: str = Field(
        default="plugin", description="First segment of every event-bus topic"
    )
    debug_param: str = Field(
        default="pluginDebug",
        description="Page URL marker enabling console-level debug log output",
    )
    enable_param: str = Field(
        default="pluginEnable",
        description="Query parameter listing force-enabled plugins",
    )
    disable_param: str = Field(
        default="pluginDisable",
        description="Query parameter listing force-disabled plugins ('all' allowed)",
    )
    ready_topic: Optional[str] = Field(
        default="cmp.ready",
        description="Topic to wait for before loading plugins; empty loads immediately",
    )
    default_timeout_ms: int = Field(
        default=3000, ge=1, description="Script load timeout in milliseconds"
    )

    page_url: str = Field(
        default="http://localhost/", description="URL of the page being served"
    )
    dimension_config: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="Per-dimension match configuration, e.g. {'section': {'matchType': 'startsWith'}}",
    )

    testgroup: Optional[int] = Field(
        default=None, ge=0, le=99, description="Fixed experiment bucket; random if unset"
    )
    experiments_enabled: bool = Field(
        default=True, description="Enable the experiment manager"
    )
    plugins_file: Optional[str] = Field(
        default=None, description="Python module defining PLUGINS"
    )
    experiments_file: Optional[str] = Field(
        default=None, description="Python module defining EXPERIMENTS"
    )
    consent_granted: List[str] = Field(
        default_factory=list, description="Consent tags granted at start-up"
    )

    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API server port")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")

    @field_validator("event_prefix")
    @classmethod
    def validate_event_prefix(cls, value: str) -> str:
        """Ensure the prefix yields well-formed ``<prefix>.<name>.<event>`` topics.

        Raises:
            ValueError: If the prefix is empty or starts/ends with a dot.
        """
        if not value or value.startswith(".") or value.endswith("."):
            raise ValueError(f"Invalid event prefix: {value!r}")
        return value

    @field_validator("dimension_config")
    @classmethod
    def validate_dimension_config(cls, value: Dict[str, Dict[str, str]]) -> Dict[str, Dict[str, str]]:
        """Reject unknown match types."""
        supported = ["exact", "startsWith", "includes"]
        for dimension, config in value.items():
            match_type = config.get("matchType", "exact")
            if match_type not in supported:
                raise ValueError(
                    f"Unsupported matchType for {dimension}: {match_type}. "
                    f"Supported match types: {', '.join(supported)}"
                )
        return value

    @field_validator("plugins_file", "experiments_file")
    @classmethod
    def validate_definition_file(cls, value: Optional[str]) -> Optional[str]:
        """Ensure a configured definition module exists."""
        if value and not Path(value).is_file():
            raise ValueError(f"Definition file not found: {value}")
        return value or None

    model_config = {
        "env_file": ".env",
        "env_prefix": "PLUGIN_LOADER_",
        "case_sensitive": False,
        "validate_assignment": True,
        "extra": "ignore",
    }
