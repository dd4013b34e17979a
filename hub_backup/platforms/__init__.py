"""Container runtime adapters for Hub Backup."""

from hub_backup.platforms.container import ContainerRuntime, DockerRuntime

__all__ = ["ContainerRuntime", "DockerRuntime"]
