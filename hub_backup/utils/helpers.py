"""
Helper utilities for Hub Backup.

Host identity lookups and small formatting helpers used by the CLI and
the backup builder.
"""

import socket
from datetime import datetime
from typing import Optional

import psutil


def format_bytes(bytes_count: float) -> str:
    """Format bytes into human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def host_name() -> str:
    return socket.gethostname()


def local_ip_address() -> Optional[str]:
    """First non-loopback IPv4 address of this host, like ``hostname -I``."""
    for interface, addresses in sorted(psutil.net_if_addrs().items()):
        if interface.startswith("lo"):
            continue
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                return address.address
    return None


def log_timestamp(moment: Optional[datetime] = None) -> str:
    """Timestamp format used by the backup log."""
    return (moment or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
