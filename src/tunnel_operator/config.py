"""Tunnel operator configuration."""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Operator settings loaded from environment variables."""

    # Service
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Cloudflare API
    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"
    cloudflare_timeout: float = 30.0

    # DNS records pointing at a tunnel
    cname_suffix: str = ".cfargotunnel.com"
    dns_ttl: int = Field(default=1, ge=1)  # 1 = automatic
    dns_proxied: bool = True

    # Connector workload
    connector_image: str = "cloudflare/cloudflared:2024.12.2"
    connector_metrics_port: int = Field(default=2000, ge=1, le=65535)

    # Reconciliation
    reconcile_timeout: float = 120.0  # Deadline for a single pass
    kube_request_timeout: float = 30.0
    retry_delay: float = 30.0  # Delay before kopf retries a failed pass

    # Namespaces to watch (empty = cluster-wide)
    namespaces: list[str] = Field(default_factory=list)

    # Liveness endpoint served by kopf
    health_host: str = "0.0.0.0"  # noqa: S104
    health_port: int = Field(default=8080, ge=1, le=65535)

    # Sentry (reads from SENTRY_ env vars, not TUNNEL_OPERATOR_)
    sentry_dsn: str | None = Field(default=None, validation_alias="SENTRY_DSN")
    sentry_traces_sample_rate: float = Field(
        default=0.2, validation_alias="SENTRY_TRACES_SAMPLE_RATE"
    )

    @field_validator("cname_suffix")
    @classmethod
    def ensure_leading_dot(cls, v: str) -> str:
        """CNAME content is the tunnel id followed by this suffix."""
        return v if v.startswith(".") else f".{v}"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    model_config = {"env_prefix": "TUNNEL_OPERATOR_", "case_sensitive": False}


settings = Settings()
