"""Rate limiting for the lifesync backend.

Requests are keyed by client IP. X-Forwarded-For is honored only when the
direct peer is a trusted proxy, so clients can't spoof their way around the
limit. The attempt store comes from ``rate_limit_storage_uri`` (in-memory
per process by default, or a shared store such as Redis across replicas).
"""

import ipaddress
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("lifesync.rate_limit")

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_cidrs(cidrs: list[str]) -> list[Network]:
    """Parse CIDR strings, skipping (and logging) invalid entries."""
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return networks


@lru_cache
def trusted_networks() -> tuple[Network, ...]:
    return tuple(parse_cidrs(get_settings().trusted_proxy_cidrs))


def is_trusted_proxy(ip_str: str, networks: tuple[Network, ...] | None = None) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in (networks or trusted_networks()))


def get_client_ip(request) -> str:
    """Client IP for rate limiting; forwarded header only via trusted proxies."""
    direct_ip = get_remote_address(request)
    if is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return direct_ip


def sync_rate_limit() -> str:
    """Limit string for sync pushes, e.g. "10/minute"."""
    return get_settings().sync_rate_limit


limiter = Limiter(key_func=get_client_ip, storage_uri=get_settings().rate_limit_storage_uri)
