"""Docker runtime access for startup checks and launching finished services.

Image builds go through the verification command like every other stage;
this module only covers what needs the API: checking the daemon is up,
making sure the shared network exists and running the built image once a
task reaches DONE.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, NotFound

logger = logging.getLogger(__name__)


class ContainerRuntimeError(Exception):
    """Raised when the docker daemon rejects or cannot serve a request."""


@dataclass
class LaunchResult:
    """A started service container and where its ports ended up."""
    container_id: str
    name: str
    host_ports: Dict[int, Optional[str]] = field(default_factory=dict)


class DockerRuntime:
    """Thin wrapper around the docker SDK client."""

    def __init__(self, client=None):
        if client is not None:
            self.client = client
            return
        # DOCKER_HOST may point at a socket proxy
        docker_host = os.environ.get("DOCKER_HOST")
        try:
            if docker_host:
                self.client = docker.DockerClient(base_url=docker_host)
            else:
                self.client = docker.from_env()
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot connect to docker: {e}") from e
        logger.info(f"DockerRuntime initialized (docker_host={docker_host or 'local socket'})")

    def ping(self) -> None:
        """Raises ContainerRuntimeError if the daemon does not answer."""
        try:
            self.client.ping()
        except DockerException as e:
            raise ContainerRuntimeError(f"Docker daemon not responding: {e}") from e

    def ensure_network(self, name: str) -> None:
        """Create the named bridge network if it does not exist yet."""
        try:
            if self.client.networks.list(names=[name]):
                return
            self.client.networks.create(name, driver="bridge")
            logger.info(f"Created docker network {name}")
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot ensure network {name}: {e}") from e

    def launch(self, image: str, name: str, ports: List[int],
               network: Optional[str] = None) -> LaunchResult:
        """Run ``image`` detached and report the host port of each container port.

        A leftover container with the same name (from an earlier run of the
        same task) is removed first.
        """
        try:
            try:
                stale = self.client.containers.get(name)
                logger.info(f"Removing stale container {name}")
                stale.remove(force=True)
            except NotFound:
                pass

            container = self.client.containers.run(
                image,
                name=name,
                detach=True,
                init=True,
                ports={f"{port}/tcp": None for port in ports},
                network=network,
            )
            container.reload()
        except (APIError, DockerException) as e:
            raise ContainerRuntimeError(f"Failed to launch {image}: {e}") from e

        mappings = container.attrs.get("NetworkSettings", {}).get("Ports") or {}
        host_ports = {}
        for port in ports:
            bindings = mappings.get(f"{port}/tcp") or []
            host_ports[port] = bindings[0].get("HostPort") if bindings else None

        logger.info(f"Launched {image} as {container.short_id} with ports {host_ports}")
        return LaunchResult(container_id=container.id, name=name, host_ports=host_ports)
