"""
Plain-text members of a backup archive.
"""

from datetime import datetime
from pathlib import Path
from typing import List

MANIFEST_NAME = "BACKUP_INFO.txt"
INSTRUCTIONS_NAME = "RESTORE_INSTRUCTIONS.txt"


def render_manifest(
    created: datetime,
    data_root: Path,
    hostname: str,
    local_ip: str,
    service_directories: List[str],
) -> str:
    lines = [
        "Hub Configuration Backup",
        "========================",
        f"Date: {created.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Hub Root: {data_root}",
        f"Local IP: {local_ip or 'unknown'}",
        f"Hostname: {hostname or 'unknown'}",
        "",
        "What's Included:",
        f"- All service configurations from {data_root}/",
        "- Service registry and hub metadata",
        "- All service data (dashboards, sensor history, etc.)",
        "",
        "What's NOT Included:",
        "- Containers (recreated fresh on restore)",
        "- Container images (latest pulled on restore)",
        "- System packages",
        "",
        "Service Directories Backed Up:",
    ]
    lines.extend(f"  • {name}" for name in service_directories)
    return "\n".join(lines) + "\n"


def render_restore_instructions(data_root: Path, user: str) -> str:
    parent = data_root.parent
    return f"""Simple Hub Restore Instructions
==============================

To restore your hub:

1. SETUP NEW MACHINE:
   - Install the operating system and run the provisioning routine
   - This creates fresh containers with the latest images

2. RESTORE YOUR DATA:
   - Stop all containers: docker stop $(docker ps -q)
   - Extract this backup: tar xzf hub-config-backup-*.tar.gz
   - Restore hub data: sudo tar xzf hub-data.tar.gz -C {parent}
   - Fix permissions: sudo chown -R {user}:{user} {data_root}
   - Restore system configs: sudo tar xzf system-essentials.tar.gz -C /

3. START EVERYTHING:
   - Start containers: docker start $(docker ps -aq)

4. VERIFY:
   - Check containers: docker ps
   - Visit your service URLs to confirm everything works

AUTOMATED RESTORE:
Use: hub-backup restore /path/to/hub-config-backup-*.tar.gz
"""


SCHEDULE_FILE = "/etc/cron.d/hub-backup-schedule"


def render_schedule(user: str, command: str, log_path: Path) -> str:
    """cron.d fragment for the monthly backup, weekly verify and daily cleanup."""
    return f"""# Smart Home Hub Backup Schedule
SHELL=/bin/bash
PATH=/usr/local/sbin:/usr/local/bin:/sbin:/bin:/usr/sbin:/usr/bin

# Monthly full backup (1st of month at 2AM)
0 2 1 * * {user} {command} backup >> {log_path} 2>&1

# Weekly verification (Sundays at 3AM)
0 3 * * 0 {user} {command} backup --verify >> {log_path} 2>&1

# Daily cleanup (every day at 1AM)
0 1 * * * {user} {command} backup --cleanup >> {log_path} 2>&1
"""
