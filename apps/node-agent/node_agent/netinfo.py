"""Local address detection for the report's ip_address field."""

from __future__ import annotations
import ipaddress
import logging
import socket
from typing import Optional

import psutil  # type: ignore

log = logging.getLogger(__name__)

# Any routable address works; connecting a UDP socket sends nothing
ROUTE_PROBE_ADDR = ("8.8.8.8", 80)

# Container and VM bridges, never the node's own address
VIRTUAL_PREFIXES = ("docker", "br-", "cni", "cali", "flannel", "veth", "virbr", "tun", "vxlan")


def _usable(ip: ipaddress.IPv4Address) -> bool:
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified)


def default_route_ip() -> Optional[str]:
    """Source address the kernel picks for the default route."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(ROUTE_PROBE_ADDR)
            address = sock.getsockname()[0]
    except OSError as e:
        log.debug(f"No default route: {e}")
        return None

    ip = ipaddress.ip_address(address)
    return str(ip) if _usable(ip) else None


def scan_interfaces() -> Optional[str]:
    """
    First IPv4 address on a physical-looking interface that is up and not
    loopback. Bridge interfaces are only used when nothing else qualifies.
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as e:
        log.error(f"Failed to enumerate interfaces: {e}")
        return None

    names = sorted(addrs, key=lambda n: (n.startswith(VIRTUAL_PREFIXES), n))
    for name in names:
        st = stats.get(name)
        if st is not None and not st.isup:
            continue
        for addr in addrs[name]:
            if addr.family != socket.AF_INET:
                continue
            ip = ipaddress.ip_address(addr.address)
            if _usable(ip):
                log.info(f"Detected local IP: {ip} ({name})")
                return str(ip)
    return None


def detect_local_ip() -> Optional[str]:
    """
    The default-route source address, falling back to an interface scan
    when the host has no route. Returns None when nothing suitable is found.
    """
    ip = default_route_ip()
    if ip is not None:
        log.info(f"Detected local IP: {ip} (default route)")
        return ip

    ip = scan_interfaces()
    if ip is None:
        log.error("Failed to get local IP: no non-loopback IPv4 interface is up")
    return ip
