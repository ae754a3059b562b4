"""Tests for the docker runtime wrapper, using a stub client."""

from types import SimpleNamespace

import pytest
from docker.errors import APIError, NotFound

from verification.container import ContainerRuntimeError, DockerRuntime


class StubContainer:
    def __init__(self, name):
        self.id = f"{name}-0123456789"
        self.short_id = self.id[:10]
        self.removed = False
        self.attrs = {"NetworkSettings": {"Ports": {"8000/tcp": [{"HostIp": "0.0.0.0", "HostPort": "49153"}]}}}

    def reload(self):
        pass

    def remove(self, force=False):
        self.removed = force


class StubContainers:
    def __init__(self, existing=None, run_error=None):
        self.existing = existing
        self.run_error = run_error
        self.run_kwargs = None

    def get(self, name):
        if self.existing is None:
            raise NotFound("no such container")
        return self.existing

    def run(self, image, **kwargs):
        if self.run_error:
            raise self.run_error
        self.run_kwargs = dict(kwargs, image=image)
        return StubContainer(kwargs["name"])


class StubNetworks:
    def __init__(self, existing=()):
        self.existing = list(existing)
        self.created = []

    def list(self, names):
        return [n for n in self.existing if n in names]

    def create(self, name, driver):
        self.created.append((name, driver))


def stub_client(**kwargs):
    return SimpleNamespace(
        containers=kwargs.get("containers", StubContainers()),
        networks=kwargs.get("networks", StubNetworks()),
        ping=kwargs.get("ping", lambda: True),
    )


def test_launch_reports_host_ports():
    containers = StubContainers()
    runtime = DockerRuntime(client=stub_client(containers=containers))

    result = runtime.launch("echo", "echo", [8000, 8001], network="seedlings")

    assert result.name == "echo"
    assert result.host_ports == {8000: "49153", 8001: None}
    assert containers.run_kwargs["ports"] == {"8000/tcp": None, "8001/tcp": None}
    assert containers.run_kwargs["network"] == "seedlings"
    assert containers.run_kwargs["detach"] is True


def test_launch_replaces_stale_container():
    stale = StubContainer("echo")
    runtime = DockerRuntime(client=stub_client(containers=StubContainers(existing=stale)))
    runtime.launch("echo", "echo", [8000])
    assert stale.removed


def test_launch_failure_is_wrapped():
    containers = StubContainers(run_error=APIError("image not found"))
    runtime = DockerRuntime(client=stub_client(containers=containers))
    with pytest.raises(ContainerRuntimeError):
        runtime.launch("echo", "echo", [8000])


def test_ensure_network_creates_once():
    networks = StubNetworks()
    runtime = DockerRuntime(client=stub_client(networks=networks))
    runtime.ensure_network("seedlings")
    assert networks.created == [("seedlings", "bridge")]

    networks = StubNetworks(existing=["seedlings"])
    DockerRuntime(client=stub_client(networks=networks)).ensure_network("seedlings")
    assert networks.created == []


def test_ping_failure_is_wrapped():
    def ping():
        raise APIError("daemon down")

    runtime = DockerRuntime(client=stub_client(ping=ping))
    with pytest.raises(ContainerRuntimeError):
        runtime.ping()
