"""
Post-restore validation for Hub Backup.
"""

from hub_backup.validation.health import HealthChecker, expand_endpoints

__all__ = ["HealthChecker", "expand_endpoints"]
