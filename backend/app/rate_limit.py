"""Rate limiting configuration for the job board backend.

Uses trusted proxy configuration to prevent X-Forwarded-For spoofing.
Only trusts forwarded headers from known proxy IPs.
"""

import ipaddress
from typing import Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from jobboard.logging_config import get_logger

from .config import get_settings

logger = get_logger("backend.rate_limit")

# Used when Settings.trusted_proxy_cidrs is empty
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",  # Hosting internal network
    "172.16.0.0/12",  # Docker/private
    "192.168.0.0/16",  # Local dev
    "127.0.0.0/8",  # Localhost
    "::1/128",  # IPv6 localhost
]


def parse_trusted_cidrs(raw: str) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Parse comma-separated CIDRs, falling back to the defaults when empty."""
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] or _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return networks


_trusted_networks: Optional[list] = None


def _get_trusted_networks():
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = parse_trusted_cidrs(get_settings().trusted_proxy_cidrs)
    return _trusted_networks


def _is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _get_trusted_networks())


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies.

    Behind a trusted reverse proxy the leftmost X-Forwarded-For entry is the
    original client. Any other direct connection is keyed by its own address.
    """
    direct_ip = get_remote_address(request)

    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

    return direct_ip


# Create limiter using client IP address as the key
limiter = Limiter(key_func=get_client_ip)
