"""Reconciliation pass for a CloudflareTunnel resource.

A pass is a fixed sequence of stages. Each stage reads the desired state and
the outputs of earlier stages and records its own outputs; the first stage to
raise ends the pass. Nothing already done is rolled back: the next pass picks
up from whatever state the cluster and Cloudflare are in.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from tunnel_operator.credentials import CredentialResolver
from tunnel_operator.dns import DNSRecordManager
from tunnel_operator.exceptions import ReconcileError
from tunnel_operator.interfaces import ClusterClient, ProviderFactory
from tunnel_operator.models import DesiredState, ResolvedState
from tunnel_operator.resources import (
    ResourceSynchronizer,
    build_connector_config_map,
    build_connector_deployment,
    build_credentials_secret,
)
from tunnel_operator.targets import TargetResolver
from tunnel_operator.tunnels import RemoteTunnelManager

logger = structlog.get_logger()


class ReconcilePhase(str, Enum):
    """Progress of a pass. Phases only move forward, or to ERROR."""

    START = "start"
    CREDENTIALS_RESOLVED = "credentials_resolved"
    TUNNEL_ENSURED = "tunnel_ensured"
    TARGET_RESOLVED = "target_resolved"
    SECRET_SYNCED = "secret_synced"
    CONFIG_SYNCED = "config_synced"
    WORKLOAD_SYNCED = "workload_synced"
    DNS_ENSURED = "dns_ensured"
    DONE = "done"
    ERROR = "error"


Stage = Callable[[DesiredState, ResolvedState], Awaitable[ResolvedState]]


@dataclass(frozen=True)
class ReconcileResult:
    phase: ReconcilePhase
    resolved: ResolvedState

    @property
    def tunnel_id(self) -> str | None:
        return self.resolved.tunnel_id


class ReconcileOrchestrator:
    """Runs one reconciliation pass per call."""

    def __init__(
        self,
        cluster: ClusterClient,
        provider_factory: ProviderFactory,
        *,
        credential_resolver: CredentialResolver | None = None,
        tunnel_manager: RemoteTunnelManager | None = None,
        target_resolver: TargetResolver | None = None,
        synchronizer: ResourceSynchronizer | None = None,
        dns_manager: DNSRecordManager | None = None,
    ) -> None:
        self._provider_factory = provider_factory
        self.credential_resolver = credential_resolver or CredentialResolver(cluster)
        self.tunnel_manager = tunnel_manager or RemoteTunnelManager(provider_factory)
        self.target_resolver = target_resolver or TargetResolver(cluster)
        self.synchronizer = synchronizer or ResourceSynchronizer(cluster)
        self.dns_manager = dns_manager or DNSRecordManager()

        self.stages: list[tuple[ReconcilePhase, Stage]] = [
            (ReconcilePhase.CREDENTIALS_RESOLVED, self._resolve_credentials),
            (ReconcilePhase.TUNNEL_ENSURED, self._ensure_tunnel),
            (ReconcilePhase.TARGET_RESOLVED, self._resolve_target),
            (ReconcilePhase.SECRET_SYNCED, self._sync_secret),
            (ReconcilePhase.CONFIG_SYNCED, self._sync_config_map),
            (ReconcilePhase.WORKLOAD_SYNCED, self._sync_deployment),
            (ReconcilePhase.DNS_ENSURED, self._ensure_dns),
        ]

    async def reconcile(
        self,
        desired: DesiredState,
        timeout: float | None = None,
    ) -> ReconcileResult:
        """Run every stage in order, stopping at the first failure.

        Args:
            desired: The resource being reconciled.
            timeout: Deadline in seconds for the whole pass. In-flight
                external calls are cancelled when it expires.

        Returns:
            The result with phase DONE and all stage outputs.

        Raises:
            ReconcileError: The first stage failure, tagged with its stage.
            TimeoutError: If the deadline expired.
        """
        log = logger.bind(name=desired.name, namespace=desired.namespace)
        log.info("Reconciling")

        resolved = ResolvedState()
        phase = ReconcilePhase.START
        attempting = phase
        try:
            async with asyncio.timeout(timeout):
                for attempting, stage in self.stages:  # noqa: B007
                    resolved = await stage(desired, resolved)
                    phase = attempting
                    log.debug("Phase reached", phase=phase.value)
        except ReconcileError as e:
            e.stage = attempting.value
            log.error(
                "Reconcile failed",
                phase=ReconcilePhase.ERROR.value,
                last_phase=phase.value,
                stage=attempting.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        except TimeoutError:
            log.error("Reconcile deadline exceeded", last_phase=phase.value, timeout=timeout)
            raise

        log.info("Reconciled", tunnel_id=resolved.tunnel_id)
        return ReconcileResult(phase=ReconcilePhase.DONE, resolved=resolved)

    async def _resolve_credentials(
        self, desired: DesiredState, resolved: ResolvedState
    ) -> ResolvedState:
        credentials = await self.credential_resolver.resolve(
            desired.spec.token_secret_name, desired.namespace
        )
        return resolved.record(credentials=credentials)

    async def _ensure_tunnel(self, desired: DesiredState, resolved: ResolvedState) -> ResolvedState:
        assert resolved.credentials is not None  # noqa: S101
        connection = await self.tunnel_manager.ensure_tunnel(
            desired.name, resolved.credentials, desired.known_tunnel_id
        )
        return resolved.record(connection=connection)

    async def _resolve_target(self, desired: DesiredState, resolved: ResolvedState) -> ResolvedState:
        url = await self.target_resolver.resolve(desired.spec.service)
        return resolved.record(target_url=url)

    async def _sync_secret(self, desired: DesiredState, resolved: ResolvedState) -> ResolvedState:
        assert resolved.connection is not None  # noqa: S101
        secret = build_credentials_secret(
            desired.name, desired.namespace, resolved.connection.credentials
        )
        applied = await self.synchronizer.create_or_update(secret, desired.owner)
        return resolved.record(secret=applied)

    async def _sync_config_map(
        self, desired: DesiredState, resolved: ResolvedState
    ) -> ResolvedState:
        assert resolved.connection is not None  # noqa: S101
        assert resolved.target_url is not None  # noqa: S101
        config_map = build_connector_config_map(
            desired.name,
            desired.namespace,
            resolved.connection.tunnel_id,
            desired.spec.domain,
            resolved.target_url,
        )
        applied = await self.synchronizer.create_or_update(config_map, desired.owner)
        return resolved.record(config_map=applied)

    async def _sync_deployment(
        self, desired: DesiredState, resolved: ResolvedState
    ) -> ResolvedState:
        assert resolved.connection is not None  # noqa: S101
        assert resolved.secret is not None  # noqa: S101
        assert resolved.config_map is not None  # noqa: S101
        deployment = build_connector_deployment(
            desired.name,
            desired.namespace,
            desired.spec.replicas,
            resolved.connection.tunnel_id,
            resolved.secret,
            resolved.config_map,
        )
        applied = await self.synchronizer.create_or_update(deployment, desired.owner)
        return resolved.record(deployment=applied)

    async def _ensure_dns(self, desired: DesiredState, resolved: ResolvedState) -> ResolvedState:
        assert resolved.credentials is not None  # noqa: S101
        assert resolved.connection is not None  # noqa: S101
        provider = self._provider_factory(resolved.credentials)
        await self.dns_manager.ensure_cname(
            provider,
            desired.spec.zone,
            desired.spec.domain,
            resolved.connection.tunnel_id,
        )
        return resolved.record(dns_ensured=True)
