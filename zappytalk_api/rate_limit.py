"""Rate limiting for unauthenticated and expensive routes.

Buckets are keyed by caller IP. The X-Forwarded-For header only counts when
the direct peer sits inside one of the configured trusted proxy networks.
"""

import ipaddress
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("zappytalk.rate_limit")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


@lru_cache
def parse_proxy_networks(cidrs: str) -> tuple[IPNetwork, ...]:
    """Parse a comma-separated CIDR list, skipping entries that do not parse."""
    networks = []
    for entry in filter(None, (part.strip() for part in cidrs.split(","))):
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {entry}")
    return tuple(networks)


def behind_trusted_proxy(peer: str, networks: tuple[IPNetwork, ...]) -> bool:
    try:
        address = ipaddress.ip_address(peer)
    except ValueError:
        return False
    return any(address in network for network in networks)


def get_client_ip(request) -> str:
    """Key function for the limiter."""
    peer = get_remote_address(request)
    networks = parse_proxy_networks(get_settings().trusted_proxy_cidrs)
    if not behind_trusted_proxy(peer, networks):
        return peer

    # Leftmost hop is the original client
    hops = request.headers.get("x-forwarded-for", "").split(",")
    return hops[0].strip() or peer


def dispatch_limit() -> str:
    return get_settings().dispatch_rate_limit


def signup_limit() -> str:
    return get_settings().signup_rate_limit


limiter = Limiter(key_func=get_client_ip)
