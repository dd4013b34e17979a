"""
CLI module for Hub Backup.

This module provides the command-line interface using Click and Rich.
"""

from hub_backup.cli.main import main

__all__ = ["main"]
