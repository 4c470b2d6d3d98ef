"""Configuration management for the clusterscan operator."""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clusterscan import __version__


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Operator settings, read from CLUSTERSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLUSTERSCAN_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "clusterscan-operator"
    app_version: str = __version__

    # Operator
    operator_namespace: str = Field("clusterscan-operator")
    watch_namespaces: str = Field("")  # comma-separated, empty watches the cluster
    field_manager: str = Field("clusterscan-operator")
    is_openshift: bool = Field(False)
    operator_config_name: str = Field("clusterscan-operator-config")

    # Images
    skip_container_resolution: bool = Field(False)
    image_refresh_hours: int = Field(24)
    scanner_image: str = Field("ghcr.io/clusterscan/scanner")
    scanner_tag: str = Field("latest")
    operator_image: str = Field("ghcr.io/clusterscan/operator")
    operator_tag: str = Field(__version__)
    docker_config_path: Optional[str] = Field(None)

    # Timeouts (seconds)
    request_timeout: float = Field(30.0)
    reconcile_timeout: float = Field(120.0)
    registry_timeout: float = Field(15.0)
    retry_delay: int = Field(30)
    resync_interval: float = Field(300.0)

    # Logging
    log_level: LogLevel = Field(LogLevel.INFO)
    log_format: str = Field("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_json: bool = Field(False)

    # Metrics / health
    metrics_port: int = Field(8000)
    liveness_endpoint: str = Field("http://0.0.0.0:8080/healthz")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lower-case log level names."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def namespaces(self) -> List[str]:
        """Namespaces the operator watches; empty means cluster-wide."""
        return [ns.strip() for ns in self.watch_namespaces.split(",") if ns.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
