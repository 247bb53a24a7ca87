"""Remote tunnel lifecycle: find the one tunnel for a name, or create it."""

from __future__ import annotations

import base64
import secrets

import structlog

from tunnel_operator.exceptions import AmbiguousTunnelError, RemoteAPIError
from tunnel_operator.interfaces import ProviderFactory, TunnelProvider
from tunnel_operator.models import (
    ConnectorCredentials,
    RemoteTunnel,
    ResolvedCredentials,
    TunnelConnection,
)

logger = structlog.get_logger()

TUNNEL_SECRET_BYTES = 32


def generate_tunnel_secret() -> str:
    """Return a base64 encoded 32 byte random tunnel secret."""
    return base64.b64encode(secrets.token_bytes(TUNNEL_SECRET_BYTES)).decode()


class RemoteTunnelManager:
    """Ensures exactly one non-deleted Cloudflare tunnel exists per name.

    Cloudflare allows several tunnels to share a name, so the name alone is
    not a safe key. Once a pass has recorded a tunnel id, later passes narrow
    the lookup to that id; if the lookup still returns more than one tunnel
    the manager refuses to pick one.
    """

    def __init__(self, provider_factory: ProviderFactory) -> None:
        self._provider_factory = provider_factory

    async def ensure_tunnel(
        self,
        name: str,
        credentials: ResolvedCredentials,
        known_id: str | None = None,
    ) -> TunnelConnection:
        """Resolve or create the tunnel for `name` and fetch its connection secret.

        Args:
            name: Tunnel name (the CloudflareTunnel resource name).
            credentials: Account token and tag for this pass.
            known_id: Tunnel id recorded by an earlier pass, if any.

        Returns:
            The tunnel together with its decoded connector credentials.

        Raises:
            AmbiguousTunnelError: If two or more tunnels match.
            RemoteAPIError: If any Cloudflare call fails.
        """
        provider = self._provider_factory(credentials)

        tunnels = await provider.list_tunnels(name, is_deleted=False, tunnel_id=known_id)
        logger.debug("Existing tunnels fetched", name=name, count=len(tunnels))

        created = False
        if len(tunnels) >= 2:  # noqa: PLR2004
            raise AmbiguousTunnelError(name, len(tunnels))
        if len(tunnels) == 1:
            tunnel = tunnels[0]
            logger.info("Tunnel already exists, reusing", name=name, tunnel_id=tunnel.id)
        else:
            tunnel = await self._create(provider, name)
            created = True

        conn_credentials = await self._fetch_connector_credentials(provider, tunnel)
        return TunnelConnection(tunnel=tunnel, credentials=conn_credentials, created=created)

    async def _create(self, provider: TunnelProvider, name: str) -> RemoteTunnel:
        logger.info("Tunnel doesn't exist, creating", name=name)
        return await provider.create_tunnel(name, generate_tunnel_secret())

    async def _fetch_connector_credentials(
        self,
        provider: TunnelProvider,
        tunnel: RemoteTunnel,
    ) -> ConnectorCredentials:
        token = await provider.get_tunnel_token(tunnel.id)
        try:
            conn_credentials = ConnectorCredentials.from_token(token)
        except ValueError as e:
            msg = f"Could not decode connector token for tunnel {tunnel.id}: {e}"
            raise RemoteAPIError(msg) from e
        if conn_credentials.tunnel_id != tunnel.id:
            msg = (
                f"Connector token for tunnel {tunnel.id} "
                f"belongs to tunnel {conn_credentials.tunnel_id}"
            )
            raise RemoteAPIError(msg)
        return conn_credentials
