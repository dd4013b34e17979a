"""
Container runtime adapters.

The core only ever needs four things from the container runtime: the names
of running containers, the names of all containers, and stop/start by
name. ``DockerRuntime`` implements them with the docker SDK.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import docker
from docker.errors import DockerException

from hub_backup.core.exceptions import ContainerRuntimeError, PartialFailure

logger = logging.getLogger(__name__)


class ContainerRuntime(ABC):
    """Capability interface to the external container runtime."""

    @abstractmethod
    def ping(self) -> bool:
        """Return True if the runtime is reachable."""
        pass

    @abstractmethod
    def list_running(self) -> List[str]:
        pass

    @abstractmethod
    def list_all(self) -> List[str]:
        pass

    @abstractmethod
    def stop(self, name: str) -> None:
        pass

    @abstractmethod
    def start(self, name: str) -> None:
        pass

    def try_stop(self, name: str) -> Optional[PartialFailure]:
        """Stop a container, returning the failure instead of raising it."""
        return self._attempt("stop", name)

    def try_start(self, name: str) -> Optional[PartialFailure]:
        """Start a container, returning the failure instead of raising it."""
        return self._attempt("start", name)

    def stop_all(self, names: Iterable[str]) -> List[PartialFailure]:
        failures = []
        for name in names:
            failure = self.try_stop(name)
            if failure:
                failures.append(failure)
        return failures

    def start_all(self, names: Iterable[str]) -> List[PartialFailure]:
        failures = []
        for name in names:
            failure = self.try_start(name)
            if failure:
                failures.append(failure)
        return failures

    def _attempt(self, action: str, name: str) -> Optional[PartialFailure]:
        try:
            getattr(self, action)(name)
        except ContainerRuntimeError as e:
            logger.warning(f"Failed to {action} {name}: {e.message}")
            return PartialFailure(name, action, e.message)
        logger.debug(f"{action} {name}: ok")
        return None


class DockerRuntime(ContainerRuntime):
    """Container runtime backed by the Docker daemon."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = 60,
        stop_timeout: int = 10,
        client: Optional[docker.DockerClient] = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.stop_timeout = stop_timeout
        self._client = client

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                if self.base_url:
                    self._client = docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self._client = docker.from_env(timeout=self.timeout)
            except DockerException as e:
                raise ContainerRuntimeError(f"Docker is not running or accessible: {e}") from e
        return self._client

    def ping(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except ContainerRuntimeError:
            return False
        except (DockerException, OSError) as e:
            logger.debug(f"Docker ping failed: {e}")
            return False

    def _names(self, all_containers: bool) -> List[str]:
        try:
            containers = self._get_client().containers.list(all=all_containers)
        except (DockerException, OSError) as e:
            raise ContainerRuntimeError(f"Failed to list containers: {e}") from e
        return [container.name for container in containers]

    def list_running(self) -> List[str]:
        return self._names(all_containers=False)

    def list_all(self) -> List[str]:
        return self._names(all_containers=True)

    def stop(self, name: str) -> None:
        try:
            self._get_client().containers.get(name).stop(timeout=self.stop_timeout)
        except (DockerException, OSError) as e:
            raise ContainerRuntimeError(str(e), details={"container": name}) from e

    def start(self, name: str) -> None:
        try:
            self._get_client().containers.get(name).start()
        except (DockerException, OSError) as e:
            raise ContainerRuntimeError(str(e), details={"container": name}) from e
