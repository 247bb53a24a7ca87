"""Shared test fixtures for tunnel operator tests."""

from __future__ import annotations

import base64
import copy
import json
from typing import Any

import pytest

from tunnel_operator.exceptions import ClusterAPIError, ZoneNotFoundError
from tunnel_operator.models import (
    DesiredState,
    DNSRecord,
    RemoteTunnel,
    ResolvedCredentials,
)

ACCOUNT_TAG = "acct-123"
ACCOUNT_TOKEN = "cf-api-token"  # noqa: S105
OWNER_UID = "3f1c2a9e-0000-4000-8000-000000000001"


def make_connector_token(account_tag: str, tunnel_id: str, secret: str) -> str:
    """Encode a connector token the way Cloudflare returns it."""
    payload = json.dumps({"a": account_tag, "t": tunnel_id, "s": secret})
    return base64.b64encode(payload.encode()).decode()


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


# ============================================
# In-memory Cloudflare
# ============================================


class FakeTunnelProvider:
    """TunnelProvider backed by in-memory tunnels, zones and records."""

    def __init__(
        self,
        tunnels: list[RemoteTunnel] | None = None,
        zones: dict[str, str] | None = None,
        account_tag: str = ACCOUNT_TAG,
    ) -> None:
        self.tunnels: list[RemoteTunnel] = list(tunnels or [])
        self.zones: dict[str, str] = zones if zones is not None else {"example.com": "zone-1"}
        self.records: dict[str, list[DNSRecord]] = {}
        self.secrets: dict[str, str] = {}
        self.account_tag = account_tag
        self.calls: list[tuple[Any, ...]] = []

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == method]

    async def list_tunnels(
        self,
        name: str,
        *,
        is_deleted: bool = False,
        tunnel_id: str | None = None,
    ) -> list[RemoteTunnel]:
        self.calls.append(("list_tunnels", name, tunnel_id))
        return [
            t
            for t in self.tunnels
            if t.name == name and (tunnel_id is None or t.id == tunnel_id)
        ]

    async def create_tunnel(self, name: str, secret: str) -> RemoteTunnel:
        self.calls.append(("create_tunnel", name, secret))
        tunnel = RemoteTunnel(id=f"tunnel-{len(self.tunnels) + 1}", name=name)
        self.tunnels.append(tunnel)
        self.secrets[tunnel.id] = secret
        return tunnel

    async def get_tunnel_token(self, tunnel_id: str) -> str:
        self.calls.append(("get_tunnel_token", tunnel_id))
        secret = self.secrets.get(tunnel_id, b64("pre-existing-secret"))
        return make_connector_token(self.account_tag, tunnel_id, secret)

    async def resolve_zone_id(self, zone_name: str) -> str:
        self.calls.append(("resolve_zone_id", zone_name))
        if zone_name not in self.zones:
            raise ZoneNotFoundError(zone_name)
        return self.zones[zone_name]

    async def list_dns_records(
        self,
        zone_id: str,
        record_type: str,
        name: str,
    ) -> list[DNSRecord]:
        self.calls.append(("list_dns_records", zone_id, record_type, name))
        return [
            r
            for r in self.records.get(zone_id, [])
            if r.type == record_type and r.name == name
        ]

    async def create_dns_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        self.calls.append(("create_dns_record", zone_id, record))
        created = record.model_copy(update={"id": f"rec-{len(self.calls)}"})
        self.records.setdefault(zone_id, []).append(created)
        return created


# ============================================
# In-memory Kubernetes
# ============================================


class FakeCluster:
    """ClusterClient storing objects by (kind, namespace, name)."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str, str]] = []
        self.failures: dict[tuple[str, str], ClusterAPIError] = {}

    def add(self, obj: dict[str, Any]) -> None:
        meta = obj["metadata"]
        self.objects[(obj["kind"], meta["namespace"], meta["name"])] = copy.deepcopy(obj)

    def fail(self, verb: str, kind: str, status: int = 500, reason: str = "Internal") -> None:
        self.failures[(verb, kind)] = ClusterAPIError(status, reason)

    def calls_to(self, verb: str) -> list[tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] == verb]

    def _maybe_fail(self, verb: str, kind: str) -> None:
        if (verb, kind) in self.failures:
            raise self.failures[(verb, kind)]

    async def get(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        self.calls.append(("get", kind, namespace, name))
        self._maybe_fail("get", kind)
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    async def create(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self.calls.append(("create", kind, namespace, name))
        self._maybe_fail("create", kind)
        if (kind, namespace, name) in self.objects:
            raise ClusterAPIError(409, "AlreadyExists")
        self.objects[(kind, namespace, name)] = copy.deepcopy(body)
        return copy.deepcopy(body)

    async def replace(
        self,
        kind: str,
        name: str,
        namespace: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        self.calls.append(("replace", kind, namespace, name))
        self._maybe_fail("replace", kind)
        if (kind, namespace, name) not in self.objects:
            raise ClusterAPIError(404, "NotFound")
        self.objects[(kind, namespace, name)] = copy.deepcopy(body)
        return copy.deepcopy(body)


def credential_secret(
    name: str = "cf-credentials",
    namespace: str = "default",
    data: dict[str, str] | None = None,
) -> dict[str, Any]:
    if data is None:
        data = {"token": b64(ACCOUNT_TOKEN), "accountID": b64(ACCOUNT_TAG)}
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "data": data,
    }


def target_service(
    name: str = "web",
    namespace: str = "default",
    ports: list[int] | None = None,
    service_type: str = "ClusterIP",
    ingress: list[dict[str, str]] | None = None,
) -> dict[str, Any]:
    service: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "type": service_type,
            "ports": [{"port": p, "protocol": "TCP"} for p in (ports or [80])],
        },
        "status": {},
    }
    if ingress is not None:
        service["status"] = {"loadBalancer": {"ingress": ingress}}
    return service


def tunnel_body(
    name: str = "my-tunnel",
    namespace: str = "default",
    spec: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "cloudflare-tunnel-operator.beezlabs.app/v1alpha1",
        "kind": "CloudflareTunnel",
        "metadata": {"name": name, "namespace": namespace, "uid": OWNER_UID},
        "spec": spec
        if spec is not None
        else {
            "zone": "example.com",
            "domain": "t.example.com",
            "tokenSecretName": "cf-credentials",
            "service": {"name": "web", "namespace": "default", "port": 80, "protocol": "http"},
            "replicas": 2,
        },
        "status": status or {},
    }


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def provider() -> FakeTunnelProvider:
    return FakeTunnelProvider()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def credentials() -> ResolvedCredentials:
    return ResolvedCredentials(account_token=ACCOUNT_TOKEN, account_tag=ACCOUNT_TAG)


@pytest.fixture
def owner() -> dict[str, Any]:
    return {
        "apiVersion": "cloudflare-tunnel-operator.beezlabs.app/v1alpha1",
        "kind": "CloudflareTunnel",
        "metadata": {"name": "my-tunnel", "namespace": "default", "uid": OWNER_UID},
    }


@pytest.fixture
def desired() -> DesiredState:
    return DesiredState.from_body(tunnel_body())


@pytest.fixture
def populated_cluster(cluster: FakeCluster) -> FakeCluster:
    """Cluster holding the credential secret and target service."""
    cluster.add(credential_secret())
    cluster.add(target_service())
    return cluster
