"""Capabilities the reconcile pipeline depends on.

The pipeline never talks to a concrete SDK. Production wiring supplies
CloudflareClient and KubernetesCluster; tests supply in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from tunnel_operator.models import DNSRecord, RemoteTunnel, ResolvedCredentials


class TunnelProvider(Protocol):
    """The six Cloudflare operations used by a reconcile pass."""

    async def list_tunnels(
        self,
        name: str,
        *,
        is_deleted: bool = False,
        tunnel_id: str | None = None,
    ) -> list[RemoteTunnel]: ...

    async def create_tunnel(self, name: str, secret: str) -> RemoteTunnel: ...

    async def get_tunnel_token(self, tunnel_id: str) -> str: ...

    async def resolve_zone_id(self, zone_name: str) -> str: ...

    async def list_dns_records(
        self,
        zone_id: str,
        record_type: str,
        name: str,
    ) -> list[DNSRecord]: ...

    async def create_dns_record(self, zone_id: str, record: DNSRecord) -> DNSRecord: ...


ProviderFactory = Callable[[ResolvedCredentials], TunnelProvider]


class ClusterClient(Protocol):
    """Namespaced object access for the kinds the operator reads and writes.

    Objects are plain dicts in API (camelCase) form. `get` returns None when
    the object does not exist and raises ClusterAPIError for anything else.
    """

    async def get(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None: ...

    async def create(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def replace(
        self,
        kind: str,
        name: str,
        namespace: str,
        body: dict[str, Any],
    ) -> dict[str, Any]: ...
