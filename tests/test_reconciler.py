"""Tests for the reconciliation pass."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from tests.conftest import FakeCluster, FakeTunnelProvider, tunnel_body
from tunnel_operator.exceptions import (
    AmbiguousTunnelError,
    CredentialNotFoundError,
    PortNotFoundError,
    ZoneNotFoundError,
)
from tunnel_operator.models import DesiredState, RemoteTunnel
from tunnel_operator.reconciler import ReconcileOrchestrator, ReconcilePhase


def _orchestrator(cluster: FakeCluster, provider: FakeTunnelProvider) -> ReconcileOrchestrator:
    return ReconcileOrchestrator(cluster, lambda _creds: provider)


class TestReconcileHappyPath:
    """A full pass against in-memory Cloudflare and Kubernetes."""

    @pytest.mark.asyncio
    async def test_first_pass_creates_everything(
        self,
        populated_cluster: FakeCluster,
        provider: FakeTunnelProvider,
        desired: DesiredState,
    ) -> None:
        result = await _orchestrator(populated_cluster, provider).reconcile(desired)

        assert result.phase is ReconcilePhase.DONE
        assert result.tunnel_id == "tunnel-1"
        assert result.resolved.target_url == "http://web.default:80"
        assert result.resolved.dns_ensured is True

        objects = populated_cluster.objects
        secret = objects[("Secret", "default", "my-tunnel")]
        config_map = objects[("ConfigMap", "default", "my-tunnel")]
        deployment = objects[("Deployment", "default", "my-tunnel")]
        for obj in (secret, config_map, deployment):
            assert obj["metadata"]["ownerReferences"][0]["name"] == "my-tunnel"
        assert deployment["spec"]["replicas"] == 2
        config = yaml.safe_load(config_map["data"]["config.yaml"])
        assert config["ingress"][0] == {
            "hostname": "t.example.com",
            "service": "http://web.default:80",
        }

        [(_, zone_id, record)] = provider.calls_to("create_dns_record")
        assert zone_id == "zone-1"
        assert record.content == "tunnel-1.cfargotunnel.com"

    @pytest.mark.asyncio
    async def test_replay_adds_no_side_effects(
        self,
        populated_cluster: FakeCluster,
        provider: FakeTunnelProvider,
        desired: DesiredState,
    ) -> None:
        orchestrator = _orchestrator(populated_cluster, provider)
        first = await orchestrator.reconcile(desired)
        snapshot = {k: dict(v) for k, v in populated_cluster.objects.items()}
        creates_before = len(populated_cluster.calls_to("create"))

        replay = DesiredState.from_body(tunnel_body(status={"tunnelID": first.tunnel_id}))
        second = await orchestrator.reconcile(replay)

        assert second.tunnel_id == first.tunnel_id
        assert len(provider.calls_to("create_tunnel")) == 1
        assert len(provider.calls_to("create_dns_record")) == 1
        assert len(populated_cluster.calls_to("create")) == creates_before
        assert populated_cluster.objects == snapshot
        assert provider.calls_to("list_tunnels")[-1] == ("list_tunnels", "my-tunnel", "tunnel-1")

    @pytest.mark.asyncio
    async def test_stages_run_in_order(
        self,
        populated_cluster: FakeCluster,
        provider: FakeTunnelProvider,
        desired: DesiredState,
    ) -> None:
        await _orchestrator(populated_cluster, provider).reconcile(desired)

        writes = [(verb, kind) for verb, kind, _, _ in populated_cluster.calls if verb != "get"]
        assert writes == [
            ("create", "Secret"),
            ("create", "ConfigMap"),
            ("create", "Deployment"),
        ]
        assert provider.calls[-1][0] == "create_dns_record"


class TestReconcileFailFast:
    """Failures stop the pass at the failing stage."""

    @pytest.mark.asyncio
    async def test_credential_failure_skips_everything_else(self, desired: DesiredState) -> None:
        credential_resolver = MagicMock()
        credential_resolver.resolve = AsyncMock(
            side_effect=CredentialNotFoundError("cf-credentials", "default")
        )
        tunnel_manager = MagicMock()
        tunnel_manager.ensure_tunnel = AsyncMock()
        target_resolver = MagicMock()
        target_resolver.resolve = AsyncMock()
        synchronizer = MagicMock()
        synchronizer.create_or_update = AsyncMock()
        dns_manager = MagicMock()
        dns_manager.ensure_cname = AsyncMock()
        provider_factory = MagicMock()

        orchestrator = ReconcileOrchestrator(
            MagicMock(),
            provider_factory,
            credential_resolver=credential_resolver,
            tunnel_manager=tunnel_manager,
            target_resolver=target_resolver,
            synchronizer=synchronizer,
            dns_manager=dns_manager,
        )

        with pytest.raises(CredentialNotFoundError) as exc:
            await orchestrator.reconcile(desired)

        assert exc.value.stage == ReconcilePhase.CREDENTIALS_RESOLVED.value
        tunnel_manager.ensure_tunnel.assert_not_awaited()
        target_resolver.resolve.assert_not_awaited()
        synchronizer.create_or_update.assert_not_awaited()
        dns_manager.ensure_cname.assert_not_awaited()
        provider_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_secret_touches_nothing(
        self, cluster: FakeCluster, provider: FakeTunnelProvider, desired: DesiredState
    ) -> None:
        with pytest.raises(CredentialNotFoundError):
            await _orchestrator(cluster, provider).reconcile(desired)

        assert provider.calls == []
        assert cluster.calls_to("create") == []

    @pytest.mark.asyncio
    async def test_ambiguous_tunnel_stops_before_resources(
        self, populated_cluster: FakeCluster, desired: DesiredState
    ) -> None:
        provider = FakeTunnelProvider(
            tunnels=[
                RemoteTunnel(id="a", name="my-tunnel"),
                RemoteTunnel(id="b", name="my-tunnel"),
            ]
        )

        with pytest.raises(AmbiguousTunnelError) as exc:
            await _orchestrator(populated_cluster, provider).reconcile(desired)

        assert exc.value.stage == ReconcilePhase.TUNNEL_ENSURED.value
        assert populated_cluster.calls_to("create") == []
        assert provider.calls_to("create_tunnel") == []

    @pytest.mark.asyncio
    async def test_port_mismatch_stops_before_resources(
        self, populated_cluster: FakeCluster, provider: FakeTunnelProvider
    ) -> None:
        body = tunnel_body()
        body["spec"]["service"]["port"] = 8443
        desired = DesiredState.from_body(body)

        with pytest.raises(PortNotFoundError):
            await _orchestrator(populated_cluster, provider).reconcile(desired)

        assert populated_cluster.calls_to("create") == []
        assert provider.calls_to("create_dns_record") == []

    @pytest.mark.asyncio
    async def test_dns_failure_keeps_synced_resources(
        self, populated_cluster: FakeCluster, desired: DesiredState
    ) -> None:
        provider = FakeTunnelProvider(zones={})

        with pytest.raises(ZoneNotFoundError) as exc:
            await _orchestrator(populated_cluster, provider).reconcile(desired)

        assert exc.value.stage == ReconcilePhase.DNS_ENSURED.value
        assert ("Deployment", "default", "my-tunnel") in populated_cluster.objects


class TestReconcileDeadline:
    """The pass honours the caller's deadline."""

    @pytest.mark.asyncio
    async def test_timeout_cancels_in_flight_call(
        self, populated_cluster: FakeCluster, provider: FakeTunnelProvider, desired: DesiredState
    ) -> None:
        cancelled = asyncio.Event()

        async def hang(*args: Any, **kwargs: Any) -> list[RemoteTunnel]:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return []

        provider.list_tunnels = hang  # type: ignore[method-assign]

        with pytest.raises(TimeoutError):
            await _orchestrator(populated_cluster, provider).reconcile(desired, timeout=0.05)

        assert cancelled.is_set()
        assert populated_cluster.calls_to("create") == []
