"""
Utilities module for Hub Backup.
"""

from hub_backup.utils.helpers import (
    format_bytes,
    host_name,
    local_ip_address,
    log_timestamp,
)
from hub_backup.utils.logging import (
    setup_logging,
    get_logger,
    StructuredFormatter,
)

__all__ = [
    "format_bytes",
    "host_name",
    "local_ip_address",
    "log_timestamp",
    "setup_logging",
    "get_logger",
    "StructuredFormatter",
]
