"""Target URL derivation for the service a tunnel fronts."""

from __future__ import annotations

from typing import Any

import structlog

from tunnel_operator.exceptions import PortNotFoundError, TargetNotFoundError
from tunnel_operator.interfaces import ClusterClient
from tunnel_operator.models import ServiceRef

logger = structlog.get_logger()

LOAD_BALANCER = "LoadBalancer"


def _has_port(service: dict[str, Any], port: int) -> bool:
    for service_port in (service.get("spec") or {}).get("ports") or []:
        if service_port.get("port") == port:
            return True
    return False


def _ingress_host(service: dict[str, Any]) -> str | None:
    ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    if not ingress:
        return None
    first = ingress[0]
    return first.get("ip") or first.get("hostname")


class TargetResolver:
    """Resolves a ServiceRef to the URL cloudflared should proxy to."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def resolve(self, ref: ServiceRef) -> str:
        """Return `protocol://host:port` for the referenced service.

        LoadBalancer services are addressed by their first ingress address,
        everything else by its cluster DNS name `name.namespace`.

        Raises:
            TargetNotFoundError: If the service is absent, or is a LoadBalancer
                with no ingress assigned yet.
            PortNotFoundError: If the service does not expose `ref.port`.
        """
        service = await self._cluster.get("Service", ref.name, ref.namespace)
        if service is None:
            raise TargetNotFoundError(ref.name, ref.namespace)

        if not _has_port(service, ref.port):
            raise PortNotFoundError(ref.name, ref.namespace, ref.port)
        logger.debug("Ports matched", service=ref.name, port=ref.port)

        if (service.get("spec") or {}).get("type") == LOAD_BALANCER:
            host = _ingress_host(service)
            if host is None:
                raise TargetNotFoundError(ref.name, ref.namespace, "has no load balancer ingress")
        else:
            host = f"{ref.name}.{ref.namespace}"

        return f"{ref.protocol}://{host}:{ref.port}"
