"""
Webhook URL validation.

A subscriber endpoint must be an absolute http(s) URL whose host does not
resolve to a loopback, unspecified, private, link-local or reserved address. Anything else is a
configuration error that no redelivery can fix. A failed DNS lookup is
treated as transient.
"""

import asyncio
import ipaddress
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from gigsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")
LOCAL_HOSTNAMES = ("localhost", "localhost.localdomain")

Resolver = Callable[[str], Awaitable[list[str]]]


class UrlCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNRESOLVABLE = "unresolvable"


@dataclass(slots=True)
class UrlValidationResult:
    check: UrlCheck
    reason: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.check == UrlCheck.VALID


async def resolve_host(host: str) -> list[str]:
    """All addresses a host name resolves to."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_local_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_loopback
        or ip.is_unspecified
        or ip.is_private
        or ip.is_link_local
        or ip.is_reserved
    )


class WebhookUrlValidator:
    def __init__(self, resolver: Resolver | None = None):
        self.resolver = resolver or resolve_host

    async def validate(self, url: str | None) -> UrlValidationResult:
        if not url or not url.strip():
            return UrlValidationResult(UrlCheck.INVALID, "No webhook URL configured")

        try:
            parts = urlsplit(url.strip())
            host = parts.hostname
            # Accessing port validates it
            _ = parts.port
        except ValueError as e:
            return UrlValidationResult(UrlCheck.INVALID, f"Unparseable webhook URL: {e}")

        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            return UrlValidationResult(
                UrlCheck.INVALID, f"Webhook URL must be absolute http(s), got scheme '{parts.scheme}'"
            )
        if not host:
            return UrlValidationResult(UrlCheck.INVALID, "Webhook URL has no host")

        host = host.lower()
        if host in LOCAL_HOSTNAMES or host.endswith(".localhost"):
            return UrlValidationResult(UrlCheck.INVALID, f"Webhook host '{host}' is local")

        if is_local_address(host):
            return UrlValidationResult(UrlCheck.INVALID, f"Webhook host '{host}' is a local address")

        try:
            ipaddress.ip_address(host)
            return UrlValidationResult(UrlCheck.VALID)
        except ValueError:
            pass

        try:
            addresses = await self.resolver(host)
        except (OSError, UnicodeError) as e:
            logger.warning("Webhook host could not be resolved", host=host, error=str(e))
            return UrlValidationResult(UrlCheck.UNRESOLVABLE, f"Could not resolve '{host}': {e}")

        local = [address for address in addresses if is_local_address(address)]
        if local:
            return UrlValidationResult(
                UrlCheck.INVALID, f"Webhook host '{host}' resolves to local address {local[0]}"
            )
        return UrlValidationResult(UrlCheck.VALID)


# Global instance
webhook_url_validator = WebhookUrlValidator()
