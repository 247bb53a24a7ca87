"""Custom exception classes for the tunnel operator.

Every error raised by a reconcile stage derives from ReconcileError so the
orchestrator can tag it with the stage that failed before handing it back to
the scheduler.
"""


class ReconcileError(Exception):
    """Base exception for a failed reconciliation pass."""

    stage: str | None = None


class ConfigurationError(ReconcileError, ValueError):
    """Raised when a required reference is missing from the tunnel spec."""


class CredentialError(ReconcileError):
    """Raised when the account credential secret is absent or malformed."""


class CredentialNotFoundError(CredentialError):
    """Raised when the referenced credential secret does not exist."""

    def __init__(self, name: str, namespace: str) -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(f"Credential secret {namespace}/{name} not found")


class CredentialFieldMissingError(CredentialError):
    """Raised when the credential secret lacks a required key."""

    def __init__(self, name: str, field: str) -> None:
        self.name = name
        self.field = field
        super().__init__(f"Credential secret {name} is missing key '{field}'")


class AmbiguityError(ReconcileError):
    """Raised when a unique key matches more than one remote object."""


class AmbiguousTunnelError(AmbiguityError):
    """Raised when two or more non-deleted tunnels share the requested name."""

    def __init__(self, name: str, count: int) -> None:
        self.name = name
        self.count = count
        super().__init__(
            f"{count} tunnels named '{name}' exist; unable to choose between them",
        )


class RemoteAPIError(ReconcileError):
    """Raised when a Cloudflare API call fails (auth, network, rate limit)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TargetNotFoundError(ReconcileError):
    """Raised when the target service cannot be resolved to an address."""

    def __init__(self, name: str, namespace: str, reason: str = "not found") -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(f"Target service {namespace}/{name} {reason}")


class PortNotFoundError(ReconcileError):
    """Raised when the target service does not expose the requested port."""

    def __init__(self, name: str, namespace: str, port: int) -> None:
        self.name = name
        self.namespace = namespace
        self.port = port
        super().__init__(f"Target service {namespace}/{name} does not expose port {port}")


class ResourceSyncError(ReconcileError):
    """Raised when a child resource cannot be fetched, created or replaced."""

    def __init__(self, kind: str, name: str, namespace: str, detail: str) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.detail = detail
        super().__init__(f"Failed to sync {kind} {namespace}/{name}: {detail}")


class ZoneNotFoundError(ReconcileError):
    """Raised when the DNS zone id cannot be resolved."""

    def __init__(self, zone: str, detail: str = "") -> None:
        self.zone = zone
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"DNS zone '{zone}' could not be resolved{suffix}")


class ClusterAPIError(ReconcileError):
    """Raised when the Kubernetes API returns an unexpected response."""

    def __init__(self, status: int | None, reason: str) -> None:
        self.status = status
        self.reason = reason
        super().__init__(f"Kubernetes API error ({status}): {reason}")
