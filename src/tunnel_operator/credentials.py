"""Account credential lookup."""

from __future__ import annotations

import base64
import binascii

import structlog

from tunnel_operator.exceptions import (
    ClusterAPIError,
    ConfigurationError,
    CredentialError,
    CredentialFieldMissingError,
    CredentialNotFoundError,
)
from tunnel_operator.interfaces import ClusterClient
from tunnel_operator.models import ResolvedCredentials

logger = structlog.get_logger()

TOKEN_KEY = "token"  # noqa: S105
ACCOUNT_ID_KEY = "accountID"


class CredentialResolver:
    """Reads the Cloudflare API token and account tag from a Secret."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def resolve(self, secret_name: str, namespace: str) -> ResolvedCredentials:
        """Resolve account credentials from `namespace/secret_name`.

        Raises:
            ConfigurationError: If no secret name was given.
            CredentialNotFoundError: If the secret does not exist.
            CredentialFieldMissingError: If `token` or `accountID` is missing.
            CredentialError: If the secret cannot be read or decoded.
        """
        if not secret_name:
            msg = "tokenSecretName must be set"
            raise ConfigurationError(msg)

        try:
            secret = await self._cluster.get("Secret", secret_name, namespace)
        except ClusterAPIError as e:
            msg = f"Could not read credential secret {namespace}/{secret_name}: {e.reason}"
            raise CredentialError(msg) from e
        if secret is None:
            raise CredentialNotFoundError(secret_name, namespace)
        logger.debug("Credential secret fetched", name=secret_name, namespace=namespace)

        data = secret.get("data") or {}
        values: dict[str, str] = {}
        for key in (TOKEN_KEY, ACCOUNT_ID_KEY):
            encoded = data.get(key)
            if not encoded:
                raise CredentialFieldMissingError(secret_name, key)
            try:
                values[key] = base64.b64decode(encoded, validate=True).decode().strip()
            except (binascii.Error, UnicodeDecodeError) as e:
                msg = f"Credential secret {secret_name} key '{key}' is not valid base64"
                raise CredentialError(msg) from e

        return ResolvedCredentials(
            account_token=values[TOKEN_KEY],
            account_tag=values[ACCOUNT_ID_KEY],
        )
