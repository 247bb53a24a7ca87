"""Kubernetes access for the reconcile pipeline.

Wraps the synchronous official client; calls run in a thread pool so the
kopf event loop is never blocked.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, cast

import structlog
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from tunnel_operator.config import settings
from tunnel_operator.exceptions import ClusterAPIError

logger = structlog.get_logger()

# Thread pool for running sync Kubernetes API calls
_executor = ThreadPoolExecutor(max_workers=8)

HTTP_NOT_FOUND = 404


async def _run_in_executor(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Run a sync function in a thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, partial(func, *args, **kwargs))


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except ConfigException:
        config.load_kube_config()
        logger.info("Loaded Kubernetes config from kubeconfig")


class KubernetesCluster:
    """ClusterClient backed by the official kubernetes client."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._api_client = api_client or client.ApiClient()
        self._core = client.CoreV1Api(self._api_client)
        self._apps = client.AppsV1Api(self._api_client)
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.kube_request_timeout
        )

        self._readers: dict[str, Callable[..., Any]] = {
            "Secret": self._core.read_namespaced_secret,
            "ConfigMap": self._core.read_namespaced_config_map,
            "Service": self._core.read_namespaced_service,
            "Deployment": self._apps.read_namespaced_deployment,
        }
        self._creators: dict[str, Callable[..., Any]] = {
            "Secret": self._core.create_namespaced_secret,
            "ConfigMap": self._core.create_namespaced_config_map,
            "Deployment": self._apps.create_namespaced_deployment,
        }
        self._replacers: dict[str, Callable[..., Any]] = {
            "Secret": self._core.replace_namespaced_secret,
            "ConfigMap": self._core.replace_namespaced_config_map,
            "Deployment": self._apps.replace_namespaced_deployment,
        }

    @staticmethod
    def _lookup(table: dict[str, Callable[..., Any]], kind: str, verb: str) -> Callable[..., Any]:
        try:
            return table[kind]
        except KeyError:
            msg = f"Cannot {verb} objects of kind {kind}"
            raise ValueError(msg) from None

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return cast("dict[str, Any]", self._api_client.sanitize_for_serialization(obj))

    async def _call(self, func: Callable[..., Any], **kwargs: Any) -> dict[str, Any]:
        try:
            obj = await _run_in_executor(func, _request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            raise ClusterAPIError(e.status, str(e.reason)) from e
        except (HTTPError, OSError) as e:
            # Transport failures, including _request_timeout expiring
            logger.warning("Kubernetes API unreachable", error=str(e), error_type=type(e).__name__)
            raise ClusterAPIError(None, str(e)) from e
        return self._to_dict(obj)

    async def get(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        reader = self._lookup(self._readers, kind, "read")
        try:
            return await self._call(reader, name=name, namespace=namespace)
        except ClusterAPIError as e:
            if e.status == HTTP_NOT_FOUND:
                return None
            raise

    async def create(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        creator = self._lookup(self._creators, kind, "create")
        return await self._call(creator, namespace=namespace, body=body)

    async def replace(
        self,
        kind: str,
        name: str,
        namespace: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        replacer = self._lookup(self._replacers, kind, "replace")
        return await self._call(replacer, name=name, namespace=namespace, body=body)
