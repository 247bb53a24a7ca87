"""DNS CNAME record pointing a public domain at a tunnel."""

from __future__ import annotations

import structlog

from tunnel_operator.config import settings
from tunnel_operator.exceptions import RemoteAPIError, ZoneNotFoundError
from tunnel_operator.interfaces import TunnelProvider
from tunnel_operator.models import DNSRecord

logger = structlog.get_logger()

CNAME = "CNAME"


def cname_target(tunnel_id: str) -> str:
    return f"{tunnel_id}{settings.cname_suffix}"


class DNSRecordManager:
    """Ensures a CNAME exists for a domain.

    Presence of any CNAME with the domain's name satisfies the manager; the
    record's content is never rewritten. A record left pointing at an older
    tunnel is reported in the log but kept as is.
    """

    async def ensure_cname(
        self,
        provider: TunnelProvider,
        zone: str,
        domain: str,
        tunnel_id: str,
    ) -> DNSRecord | None:
        """Create the CNAME `domain -> <tunnel_id>.cfargotunnel.com` if none exists.

        Returns:
            The created record, or None when a record already existed.

        Raises:
            ZoneNotFoundError: If the zone id cannot be resolved.
            RemoteAPIError: If listing or creating records fails.
        """
        try:
            zone_id = await provider.resolve_zone_id(zone)
        except ZoneNotFoundError:
            raise
        except RemoteAPIError as e:
            raise ZoneNotFoundError(zone, e.message) from e

        target = cname_target(tunnel_id)
        existing = await provider.list_dns_records(zone_id, CNAME, domain)
        if existing:
            logger.debug("DNS record exists", domain=domain, count=len(existing))
            stale = [rec for rec in existing if rec.content != target]
            if stale:
                logger.warning(
                    "DNS record points at a different target, leaving it unchanged",
                    domain=domain,
                    current=stale[0].content,
                    expected=target,
                )
            return None

        logger.info("DNS record doesn't exist, creating", domain=domain, target=target)
        return await provider.create_dns_record(
            zone_id,
            DNSRecord(
                type=CNAME,
                name=domain,
                content=target,
                ttl=settings.dns_ttl,
                proxied=settings.dns_proxied,
            ),
        )
