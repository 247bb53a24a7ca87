"""Kopf handlers wiring CloudflareTunnel events to the reconciler.

Kopf owns watching, per-object serialisation and retries. A failed pass is
surfaced as a TemporaryError so kopf requeues it after a delay; a spec that
cannot be parsed is a PermanentError and waits for the next spec change.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf
import structlog

from tunnel_operator import config
from tunnel_operator.cloudflare_client import cloudflare_provider
from tunnel_operator.exceptions import ConfigurationError, ReconcileError
from tunnel_operator.kube_client import KubernetesCluster, load_kube_config
from tunnel_operator.models import API_GROUP, API_VERSION, PLURAL, DesiredState
from tunnel_operator.reconciler import ReconcileOrchestrator
from tunnel_operator.sentry import SentryConfig, configure_logging, init_sentry

SERVICE_NAME = "cloudflare-tunnel-operator"

logger = structlog.get_logger()


class OrchestratorSingleton:
    """Holder for the orchestrator shared by all handler invocations."""

    _instance: ReconcileOrchestrator | None = None

    @classmethod
    def get(cls) -> ReconcileOrchestrator:
        if cls._instance is None:
            cls._instance = ReconcileOrchestrator(KubernetesCluster(), cloudflare_provider)
        return cls._instance

    @classmethod
    def set(cls, orchestrator: ReconcileOrchestrator | None) -> None:
        cls._instance = orchestrator

    @classmethod
    def is_ready(cls) -> bool:
        return cls._instance is not None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure logging, error reporting and the Kubernetes client."""
    cfg = config.settings
    init_sentry(
        SERVICE_NAME,
        SentryConfig(
            service_name=SERVICE_NAME,
            dsn=cfg.sentry_dsn,
            environment=cfg.environment,
            traces_sample_rate=cfg.sentry_traces_sample_rate,
        ),
    )
    configure_logging(
        SERVICE_NAME,
        log_level=logging.getLevelNamesMapping()[cfg.log_level],
        json_format=cfg.environment != "development",
    )
    load_kube_config()
    OrchestratorSingleton.get()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = cfg.kube_request_timeout
    logger.info("Operator configured", namespaces=cfg.namespaces or "cluster-wide")


@kopf.on.probe(id="reconciler")
def reconciler_ready(**_: Any) -> bool:
    return OrchestratorSingleton.is_ready()


@kopf.on.create(API_GROUP, API_VERSION, PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, PLURAL)
@kopf.on.resume(API_GROUP, API_VERSION, PLURAL)
async def reconcile_tunnel(
    body: kopf.Body,
    patch: kopf.Patch,
    **_: Any,
) -> None:
    """Run one reconciliation pass and persist the tunnel id in status."""
    try:
        desired = DesiredState.from_body(body)
    except ConfigurationError as e:
        raise kopf.PermanentError(str(e)) from e

    orchestrator = OrchestratorSingleton.get()
    try:
        result = await orchestrator.reconcile(desired, timeout=config.settings.reconcile_timeout)
    except ConfigurationError as e:
        raise kopf.PermanentError(str(e)) from e
    except ReconcileError as e:
        msg = f"{e.stage or 'reconcile'}: {e}"
        raise kopf.TemporaryError(msg, delay=config.settings.retry_delay) from e
    except TimeoutError as e:
        msg = f"reconcile did not finish within {config.settings.reconcile_timeout}s"
        raise kopf.TemporaryError(msg, delay=config.settings.retry_delay) from e

    if result.tunnel_id and result.tunnel_id != desired.known_tunnel_id:
        patch.status["tunnelID"] = result.tunnel_id
