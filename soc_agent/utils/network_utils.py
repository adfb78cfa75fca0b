# soc_agent/utils/network_utils.py
"""
Network Utilities - Host addressing and socket helpers
"""

import ipaddress
import logging
import socket
from typing import Dict, Optional

import psutil

from soc_agent.schemas.snapshots import NetworkConnectionItem

logger = logging.getLogger(__name__)


def get_primary_ipv4() -> str:
    """First non-loopback IPv4 address, or 127.0.0.1 when none exists"""
    try:
        for addresses in psutil.net_if_addrs().values():
            for address in addresses:
                if address.family != socket.AF_INET:
                    continue
                try:
                    ip = ipaddress.ip_address(address.address)
                except ValueError:
                    continue
                if not ip.is_loopback and not ip.is_link_local:
                    return address.address
    except (OSError, psutil.Error) as e:
        logger.debug(f"Interface enumeration failed: {e}")
    return '127.0.0.1'


def protocol_name(conn) -> str:
    """'tcp'/'udp', with a '6' suffix for IPv6 sockets"""
    base = 'udp' if conn.type == socket.SOCK_DGRAM else 'tcp'
    return base + '6' if conn.family == socket.AF_INET6 else base


def connection_item(conn, process_names: Dict[int, str]) -> NetworkConnectionItem:
    """Build a snapshot item from a ``psutil`` connection tuple"""
    local_ip, local_port = (conn.laddr.ip, conn.laddr.port) if conn.laddr else ('', 0)
    remote_ip, remote_port = (conn.raddr.ip, conn.raddr.port) if conn.raddr else ('', 0)
    state = conn.status if conn.status and conn.status != psutil.CONN_NONE else ''
    return NetworkConnectionItem(
        protocol=protocol_name(conn),
        local_ip=local_ip,
        local_port=local_port,
        remote_ip=remote_ip,
        remote_port=remote_port,
        state=state,
        pid=conn.pid,
        process_name=process_names.get(conn.pid) if conn.pid else None,
    )


def get_hostname() -> str:
    return socket.gethostname()
