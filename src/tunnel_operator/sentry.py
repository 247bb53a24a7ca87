"""Logging and Sentry initialization for the tunnel operator."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

import sentry_sdk
import structlog
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

if TYPE_CHECKING:
    from sentry_sdk.types import Event

DEFAULT_TRACES_SAMPLE_RATE = 0.2
DEV_TRACES_SAMPLE_RATE = 1.0

# Keys scrubbed from Sentry extra context
SENSITIVE_KEYS = ("token", "secret", "credentials", "api_key")


def configure_logging(
    service_name: str,
    log_level: int = logging.INFO,
    json_format: bool | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route kopf's stdlib records and the reconciler's structlog events to stdout.

    Runs from the kopf startup handler after init_sentry(). Output is JSON
    unless `json_format` is False or, when it is None, ENVIRONMENT is
    "development".
    """
    if json_format is None:
        environment = os.environ.get("ENVIRONMENT", "development")
        json_format = environment != "development"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates (kopf installs its own)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _sentry_processor,
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return cast("structlog.stdlib.BoundLogger", structlog.get_logger(service_name))


# Event keys promoted to Sentry tags so failures group by resource and stage
TAG_KEYS = ("name", "namespace", "stage", "error_type")
STANDARD_KEYS = {"event", "level", "timestamp", "logger", "filename", "lineno", "exc_info"}


def _sentry_processor(
    _logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Record every event as a breadcrumb and capture errors.

    A no-op until sentry_sdk.init() has run.
    """
    message = str(event_dict.get("event", ""))
    extra = {k: v for k, v in event_dict.items() if k not in STANDARD_KEYS}

    sentry_sdk.add_breadcrumb(
        message=message,
        category="reconcile",
        level=event_dict.get("level", method_name),
        data=extra or None,
    )

    if method_name in ("error", "exception", "critical"):
        with sentry_sdk.isolation_scope() as scope:
            for key in TAG_KEYS:
                if key in extra:
                    scope.set_tag(key, str(extra[key]))
            for key, value in extra.items():
                scope.set_extra(key, value)
            exc_info = event_dict.get("exc_info")
            if isinstance(exc_info, tuple):
                sentry_sdk.capture_exception(exc_info[1])
            elif isinstance(exc_info, BaseException):
                sentry_sdk.capture_exception(exc_info)
            elif exc_info:
                sentry_sdk.capture_exception()
            else:
                sentry_sdk.capture_message(
                    message, level="error" if method_name == "error" else "fatal"
                )

    return event_dict


@dataclass
class SentryConfig:
    """Configuration for Sentry SDK initialization."""

    service_name: str
    dsn: str | None = None
    environment: str | None = None
    release: str | None = None
    traces_sample_rate: float | None = None


def _scrub_event(event: Event, hint: dict[str, Any]) -> Event | None:
    """Drop credential material from extra context before it leaves the process."""
    extra = event.get("extra")
    if extra is not None and isinstance(extra, dict):
        for key in list(extra.keys()):
            if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
                extra[key] = "[Filtered]"
    return event


def init_sentry(service_name: str, config: SentryConfig | None = None) -> bool:
    """
    Initialize Sentry SDK for the operator.

    Args:
        service_name: Name of the service (e.g., 'cloudflare-tunnel-operator')
        config: Optional SentryConfig object with full configuration

    Returns:
        True if Sentry was initialized, False if DSN was not provided
    """
    cfg = config or SentryConfig(service_name=service_name)
    effective_dsn = cfg.dsn or os.environ.get("SENTRY_DSN")
    if not effective_dsn:
        return False

    effective_env = cfg.environment or os.environ.get("ENVIRONMENT", "development")
    traces_rate = cfg.traces_sample_rate
    if traces_rate is None:
        traces_rate = (
            DEFAULT_TRACES_SAMPLE_RATE
            if effective_env == "production"
            else DEV_TRACES_SAMPLE_RATE
        )

    sentry_sdk.init(
        dsn=effective_dsn,
        environment=effective_env,
        release=cfg.release or f"{service_name}@{os.environ.get('VERSION', '0.1.0')}",
        traces_sample_rate=traces_rate,
        integrations=[
            HttpxIntegration(),
            AsyncioIntegration(),
            # Error events are captured by the structlog processor
            LoggingIntegration(level=logging.INFO, event_level=None),
        ],
        before_send=_scrub_event,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service_name)
    return True
