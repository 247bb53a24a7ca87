"""Cloudflare Tunnel Operator entry point."""

import kopf

from tunnel_operator import handlers  # noqa: F401  registers the kopf handlers
from tunnel_operator.config import settings


def main() -> None:
    """Run the operator until interrupted."""
    kopf.run(
        clusterwide=not settings.namespaces,
        namespaces=settings.namespaces,
        liveness_endpoint=f"http://{settings.health_host}:{settings.health_port}/healthz",
    )


if __name__ == "__main__":
    main()
