"""Cloudflare API client for tunnel and DNS operations."""

from __future__ import annotations

from typing import Any, Mapping, Sequence, TypeVar, cast  # noqa: UP035

import structlog
from httpx import AsyncClient, RequestError, Response
from pydantic import BaseModel, ValidationError

from tunnel_operator.config import settings
from tunnel_operator.exceptions import RemoteAPIError, ZoneNotFoundError
from tunnel_operator.models import DNSRecord, RemoteTunnel, ResolvedCredentials

logger = structlog.get_logger()

TUNNELS_PER_PAGE = 100


def _check(res: dict[str, object], status_code: int | None = None) -> None:
    if not res.get("success"):
        raw_errors = res.get("errors") or []
        errs = cast("Sequence[Mapping[str, Any]]", raw_errors)
        if errs:
            msg_obj = errs[0].get("message", "Unknown Cloudflare API error")
            msg = str(msg_obj)
        else:
            msg = "Unknown error"
        error_msg = f"Cloudflare API error: {msg}"
        raise RemoteAPIError(error_msg, status_code=status_code)


def _parse(r: Response) -> Any:
    """Unwrap the Cloudflare response envelope and return `result`."""
    try:
        data = r.json()
    except ValueError as e:
        msg = f"Cloudflare API returned non-JSON response ({r.status_code})"
        raise RemoteAPIError(msg, status_code=r.status_code) from e
    if not isinstance(data, dict):
        msg = "Cloudflare API returned an unexpected payload"
        raise RemoteAPIError(msg, status_code=r.status_code)
    _check(data, r.status_code)
    if r.is_error:
        msg = f"Cloudflare API error: HTTP {r.status_code}"
        raise RemoteAPIError(msg, status_code=r.status_code)
    return data.get("result")


ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate(model: type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        msg = f"Cloudflare API returned a malformed {model.__name__}: {e}"
        raise RemoteAPIError(msg) from e


def _validate_list(model: type[ModelT], payload: Any) -> list[ModelT]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        msg = f"Cloudflare API returned {type(payload).__name__} where a list was expected"
        raise RemoteAPIError(msg)
    return [_validate(model, item) for item in payload]


class CloudflareClient:
    """Async Cloudflare client scoped to one account and API token."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.account_id = account_id
        self._api_token = api_token
        self.base_url = base_url or settings.cloudflare_api_base
        self.timeout = timeout if timeout is not None else settings.cloudflare_timeout

    def _http_client(self) -> AsyncClient:
        return AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._http_client() as client:
            try:
                r = await client.request(method, path, **kwargs)
            except RequestError as e:
                msg = f"Cloudflare API request failed: {e}"
                raise RemoteAPIError(msg) from e
        return _parse(r)

    async def list_tunnels(
        self,
        name: str,
        *,
        is_deleted: bool = False,
        tunnel_id: str | None = None,
    ) -> list[RemoteTunnel]:
        """List tunnels in the account with an exact name.

        Args:
            name: Tunnel name to match.
            is_deleted: Include only deleted (True) or only live (False) tunnels.
            tunnel_id: Narrow the listing to a single tunnel id.
        """
        params: dict[str, Any] = {
            "name": name,
            "is_deleted": str(is_deleted).lower(),
            "per_page": TUNNELS_PER_PAGE,
        }
        if tunnel_id:
            params["uuid"] = tunnel_id

        result = await self._request(
            "GET", f"/accounts/{self.account_id}/cfd_tunnel", params=params
        )
        tunnels = _validate_list(RemoteTunnel, result)
        # The API filter is not guaranteed to be exact
        return [t for t in tunnels if t.name == name]

    async def create_tunnel(self, name: str, secret: str) -> RemoteTunnel:
        """Create a locally-configured tunnel with a caller-supplied secret."""
        result = await self._request(
            "POST",
            f"/accounts/{self.account_id}/cfd_tunnel",
            json={"name": name, "tunnel_secret": secret, "config_src": "local"},
        )
        if not isinstance(result, dict) or not result.get("id"):
            msg = "Cloudflare create tunnel response missing id"
            raise RemoteAPIError(msg)
        tunnel = _validate(RemoteTunnel, result)
        logger.info("Created Cloudflare tunnel", tunnel_id=tunnel.id, name=name)
        return tunnel

    async def get_tunnel_token(self, tunnel_id: str) -> str:
        """Fetch the base64 connector token for a tunnel."""
        result = await self._request(
            "GET", f"/accounts/{self.account_id}/cfd_tunnel/{tunnel_id}/token"
        )
        if not isinstance(result, str) or not result:
            msg = "Cloudflare tunnel token response missing token"
            raise RemoteAPIError(msg)
        return result

    async def resolve_zone_id(self, zone_name: str) -> str:
        """Look up a zone id by its name."""
        result = await self._request("GET", "/zones", params={"name": zone_name})
        for zone in result or []:
            if isinstance(zone, dict) and zone.get("name") == zone_name and zone.get("id"):
                return str(zone["id"])
        raise ZoneNotFoundError(zone_name, "no zone with that name in the account")

    async def list_dns_records(
        self,
        zone_id: str,
        record_type: str,
        name: str,
    ) -> list[DNSRecord]:
        result = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"type": record_type, "name": name},
        )
        return _validate_list(DNSRecord, result)

    async def create_dns_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        """Create a DNS record and return it as stored by Cloudflare."""
        result = await self._request(
            "POST",
            f"/zones/{zone_id}/dns_records",
            json=record.model_dump(exclude={"id"}),
        )
        if not isinstance(result, dict) or not result.get("id"):
            msg = "Cloudflare DNS create response missing record id"
            raise RemoteAPIError(msg)
        created = _validate(DNSRecord, result)
        logger.info(
            "Created DNS record",
            type=created.type,
            name=created.name,
            target=created.content,
            record_id=created.id,
        )
        return created


def cloudflare_provider(credentials: ResolvedCredentials) -> CloudflareClient:
    """Build a client authenticated with the account credentials of one pass."""
    return CloudflareClient(
        account_id=credentials.account_tag,
        api_token=credentials.account_token,
    )
