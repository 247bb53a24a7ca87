"""Kubernetes operator keeping Cloudflare tunnels, DNS and cloudflared in sync."""

from tunnel_operator.exceptions import (
    AmbiguityError,
    AmbiguousTunnelError,
    ClusterAPIError,
    ConfigurationError,
    CredentialError,
    CredentialFieldMissingError,
    CredentialNotFoundError,
    PortNotFoundError,
    ReconcileError,
    RemoteAPIError,
    ResourceSyncError,
    TargetNotFoundError,
    ZoneNotFoundError,
)
from tunnel_operator.models import DesiredState, ResolvedState, TunnelSpec
from tunnel_operator.reconciler import ReconcileOrchestrator, ReconcilePhase, ReconcileResult

__version__ = "0.1.0"

__all__ = [
    "AmbiguityError",
    "AmbiguousTunnelError",
    "ClusterAPIError",
    "ConfigurationError",
    "CredentialError",
    "CredentialFieldMissingError",
    "CredentialNotFoundError",
    "DesiredState",
    "PortNotFoundError",
    "ReconcileError",
    "ReconcileOrchestrator",
    "ReconcilePhase",
    "ReconcileResult",
    "RemoteAPIError",
    "ResolvedState",
    "ResourceSyncError",
    "TargetNotFoundError",
    "TunnelSpec",
    "ZoneNotFoundError",
]
