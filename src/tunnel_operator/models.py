"""Data model for tunnel reconciliation.

The desired state is read-only for the whole pass. Stage outputs are
accumulated in ResolvedState, which only ever grows: a stage may record
new fields but never overwrite one another stage produced.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tunnel_operator.exceptions import ConfigurationError

API_GROUP = "cloudflare-tunnel-operator.beezlabs.app"
API_VERSION = "v1alpha1"
PLURAL = "cloudflaretunnels"
KIND = "CloudflareTunnel"


class ServiceRef(BaseModel):
    """In-cluster service the tunnel fronts."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    namespace: str = ""
    port: int = Field(..., ge=1, le=65535)
    protocol: str = "http"


class TunnelSpec(BaseModel):
    """The `spec` block of a CloudflareTunnel resource."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    zone: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    token_secret_name: str = Field(default="", alias="tokenSecretName")
    service: ServiceRef
    replicas: int = Field(default=1, ge=0)


@dataclass(frozen=True)
class DesiredState:
    """Everything a pass needs to know about the resource being reconciled."""

    name: str
    namespace: str
    spec: TunnelSpec
    owner: dict[str, Any]
    known_tunnel_id: str | None = None

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> DesiredState:
        """Build the desired state from a CloudflareTunnel resource body.

        Raises:
            ConfigurationError: If the spec block fails validation.
        """
        meta = body.get("metadata") or {}
        name = meta.get("name", "")
        namespace = meta.get("namespace", "")
        raw_spec = dict(body.get("spec") or {})

        # Target service defaults to the tunnel's own namespace
        service = dict(raw_spec.get("service") or {})
        if not service.get("namespace"):
            service["namespace"] = namespace
        raw_spec["service"] = service

        try:
            spec = TunnelSpec.model_validate(raw_spec)
        except ValidationError as e:
            msg = f"Invalid spec for {namespace}/{name}: {e}"
            raise ConfigurationError(msg) from e

        status = body.get("status") or {}
        return cls(
            name=name,
            namespace=namespace,
            spec=spec,
            owner={
                "apiVersion": body.get("apiVersion", f"{API_GROUP}/{API_VERSION}"),
                "kind": body.get("kind", KIND),
                "metadata": {"name": name, "namespace": namespace, "uid": meta.get("uid")},
            },
            known_tunnel_id=status.get("tunnelID") or None,
        )


@dataclass(frozen=True)
class ResolvedCredentials:
    """Account credentials read from the referenced secret."""

    account_token: str
    account_tag: str

    def __repr__(self) -> str:
        return f"ResolvedCredentials(account_tag={self.account_tag!r}, account_token='***')"


class RemoteTunnel(BaseModel):
    """A Cloudflare tunnel as returned by the API."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    created_at: str | None = None
    deleted_at: str | None = None


class ConnectorCredentials(BaseModel):
    """Connection secret decoded from a tunnel's connector token.

    The token is base64 of a compact JSON document (`a`, `t`, `s`); cloudflared
    expects the long key names in its credentials file.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    account_tag: str = Field(..., alias="a")
    tunnel_id: str = Field(..., alias="t")
    tunnel_secret: str = Field(..., alias="s")

    @classmethod
    def from_token(cls, token: str) -> ConnectorCredentials:
        """Decode a connector token.

        Raises:
            ValueError: If the token is not base64 encoded JSON with the expected keys.
        """
        try:
            decoded = base64.b64decode(token, validate=True)
            return cls.model_validate(json.loads(decoded))
        except (binascii.Error, json.JSONDecodeError, UnicodeDecodeError) as e:
            msg = f"Malformed connector token: {e}"
            raise ValueError(msg) from e

    def to_credentials_file(self) -> str:
        return json.dumps(
            {
                "AccountTag": self.account_tag,
                "TunnelID": self.tunnel_id,
                "TunnelSecret": self.tunnel_secret,
            }
        )

    def __repr__(self) -> str:
        return f"ConnectorCredentials(tunnel_id={self.tunnel_id!r}, tunnel_secret='***')"


@dataclass(frozen=True)
class TunnelConnection:
    """Outcome of ensuring the remote tunnel."""

    tunnel: RemoteTunnel
    credentials: ConnectorCredentials
    created: bool = False

    @property
    def tunnel_id(self) -> str:
        return self.tunnel.id


class DNSRecord(BaseModel):
    """A DNS record in a Cloudflare zone."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str = "CNAME"
    name: str
    content: str
    ttl: int = 1
    proxied: bool = False


@dataclass(frozen=True)
class ResolvedState:
    """Append-only record of what each reconcile stage produced."""

    credentials: ResolvedCredentials | None = None
    connection: TunnelConnection | None = None
    target_url: str | None = None
    secret: dict[str, Any] | None = None
    config_map: dict[str, Any] | None = None
    deployment: dict[str, Any] | None = None
    dns_ensured: bool = False

    def record(self, **values: Any) -> ResolvedState:
        """Return a copy with new fields set.

        Raises:
            ValueError: If a field is unknown or was already recorded.
        """
        known = {f.name for f in fields(self)}
        for key in values:
            if key not in known:
                msg = f"Unknown resolved field: {key}"
                raise ValueError(msg)
            if getattr(self, key) not in (None, False):
                msg = f"Resolved field already recorded: {key}"
                raise ValueError(msg)
        return replace(self, **values)

    @property
    def tunnel_id(self) -> str | None:
        return self.connection.tunnel_id if self.connection else None
