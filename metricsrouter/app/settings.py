############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# settings.py: Application configuration and environment settings
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Application settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_version() -> str:
    """Read version from installed metadata, falling back to pyproject.toml."""
    try:
        from importlib.metadata import version
        return version("metricsrouter")
    except Exception:
        pass
    # Fallback: read pyproject.toml directly (works in dev without pip install)
    try:
        import tomllib
        toml_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except Exception:
        return "0.0.0"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="METRICSROUTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "metricsrouter"
    app_version: str = Field(default_factory=_get_version)
    host: str = "0.0.0.0"
    port: int = 6443
    reload: bool = False

    # Backend credentials
    token_file: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    root_ca_file: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
    discovery_timeout: float = 10.0

    # Reconciliation
    reconcile_workers: int = Field(default=1, ge=1)
    resync_period: float = 60.0  # seconds
    retry_base_delay: float = 0.5  # seconds
    retry_max_delay: float = 300.0  # seconds

    # Query path
    resolve_retry_attempts: int = Field(default=3, ge=1)

    # Registration sources preloaded at startup (JSON list)
    sources_file: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and console renderers are supported."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
