"""Child resources of a CloudflareTunnel and their create-or-update sync.

Three objects share the tunnel resource's name and namespace:

- a Secret holding cloudflared's credentials.json,
- a ConfigMap holding cloudflared's config.yaml (ingress rules),
- a Deployment running the connector with both mounted.

Each is owned by the tunnel resource so deleting it garbage-collects them.
"""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any

import kopf
import structlog
import yaml

from tunnel_operator.config import settings
from tunnel_operator.exceptions import ClusterAPIError, ResourceSyncError
from tunnel_operator.interfaces import ClusterClient
from tunnel_operator.models import ConnectorCredentials

logger = structlog.get_logger()

CREDENTIALS_FILE = "credentials.json"
CONFIG_FILE = "config.yaml"
CREDENTIALS_MOUNT = "/etc/cloudflared/creds"
CONFIG_MOUNT = "/etc/cloudflared/config"
CATCH_ALL_SERVICE = "http_status:404"


def _labels(name: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": "cloudflared",
        "app.kubernetes.io/instance": name,
        "app.kubernetes.io/managed-by": "cloudflare-tunnel-operator",
    }


def build_credentials_secret(
    name: str,
    namespace: str,
    credentials: ConnectorCredentials,
) -> dict[str, Any]:
    """Secret carrying the tunnel id and secret in cloudflared's credentials format."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace, "labels": _labels(name)},
        "type": "Opaque",
        "stringData": {CREDENTIALS_FILE: credentials.to_credentials_file()},
    }


def build_connector_config(tunnel_id: str, domain: str, target_url: str) -> dict[str, Any]:
    return {
        "tunnel": tunnel_id,
        "credentials-file": f"{CREDENTIALS_MOUNT}/{CREDENTIALS_FILE}",
        "metrics": f"0.0.0.0:{settings.connector_metrics_port}",
        "no-autoupdate": True,
        "ingress": [
            {"hostname": domain, "service": target_url},
            {"service": CATCH_ALL_SERVICE},
        ],
    }


def build_connector_config_map(
    name: str,
    namespace: str,
    tunnel_id: str,
    domain: str,
    target_url: str,
) -> dict[str, Any]:
    """ConfigMap routing `domain` to `target_url`, with a 404 catch-all."""
    config = build_connector_config(tunnel_id, domain, target_url)
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace, "labels": _labels(name)},
        "data": {CONFIG_FILE: yaml.safe_dump(config, sort_keys=False)},
    }


def _checksum(*objs: dict[str, Any]) -> str:
    digest = hashlib.sha256()
    for obj in objs:
        payload = obj.get("data") or obj.get("stringData") or {}
        digest.update(json.dumps(payload, sort_keys=True).encode())
    return digest.hexdigest()


def build_connector_deployment(
    name: str,
    namespace: str,
    replicas: int,
    tunnel_id: str,
    secret: dict[str, Any],
    config_map: dict[str, Any],
) -> dict[str, Any]:
    """Deployment running cloudflared against the mounted config and credentials.

    The pod template carries a checksum of both mounted objects so a changed
    ingress rule or rotated secret rolls the connector pods.
    """
    labels = _labels(name)
    port = settings.connector_metrics_port
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {
                    "labels": labels,
                    "annotations": {
                        "cloudflare-tunnel-operator.beezlabs.app/tunnel-id": tunnel_id,
                        "cloudflare-tunnel-operator.beezlabs.app/checksum": _checksum(
                            secret, config_map
                        ),
                    },
                },
                "spec": {
                    "containers": [
                        {
                            "name": "cloudflared",
                            "image": settings.connector_image,
                            "args": [
                                "tunnel",
                                "--config",
                                f"{CONFIG_MOUNT}/{CONFIG_FILE}",
                                "run",
                            ],
                            "ports": [{"name": "metrics", "containerPort": port}],
                            "livenessProbe": {
                                "httpGet": {"path": "/ready", "port": port},
                                "initialDelaySeconds": 10,
                                "periodSeconds": 10,
                                "failureThreshold": 1,
                            },
                            "volumeMounts": [
                                {"name": "config", "mountPath": CONFIG_MOUNT, "readOnly": True},
                                {"name": "creds", "mountPath": CREDENTIALS_MOUNT, "readOnly": True},
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "config",
                            "configMap": {"name": config_map["metadata"]["name"]},
                        },
                        {
                            "name": "creds",
                            "secret": {"secretName": secret["metadata"]["name"]},
                        },
                    ],
                },
            },
        },
    }


class ResourceSynchronizer:
    """Create-or-update with full replace semantics for owned child resources."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def create_or_update(
        self,
        desired: dict[str, Any],
        owner: dict[str, Any],
    ) -> dict[str, Any]:
        """Write `desired` to the cluster, owned by `owner`.

        The owner reference is stamped before anything is written. An absent
        object is created; a present one is replaced wholesale with the
        desired object, discarding whatever else it held.

        Args:
            desired: Object in API form with kind and metadata.name/namespace.
            owner: Owner body (apiVersion, kind, metadata.name, metadata.uid).

        Returns:
            The object as returned by the API server.

        Raises:
            ResourceSyncError: If the owner is invalid or any API call fails.
        """
        body = copy.deepcopy(desired)
        kind = body["kind"]
        name = body["metadata"]["name"]
        namespace = body["metadata"]["namespace"]

        if not (owner.get("metadata") or {}).get("uid"):
            raise ResourceSyncError(kind, name, namespace, "owner reference has no uid")
        kopf.append_owner_reference(body, owner=owner)
        logger.debug("Owner reference set", kind=kind, name=name, namespace=namespace)

        try:
            existing = await self._cluster.get(kind, name, namespace)
        except ClusterAPIError as e:
            raise ResourceSyncError(kind, name, namespace, f"fetch failed: {e.reason}") from e

        try:
            if existing is None:
                logger.info("Creating resource", kind=kind, name=name, namespace=namespace)
                return await self._cluster.create(kind, namespace, body)
            logger.info("Updating resource", kind=kind, name=name, namespace=namespace)
            return await self._cluster.replace(kind, name, namespace, body)
        except ClusterAPIError as e:
            verb = "create" if existing is None else "update"
            raise ResourceSyncError(kind, name, namespace, f"{verb} failed: {e.reason}") from e
