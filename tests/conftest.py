from __future__ import annotations

import pytest

from finks.context import Context
from finks.db import EventLog
from finks.docker_ops import ContainerSummary, NetworkInfo, RunSpec
from finks.errors import ImagePullFailure, NotFound, RuntimeOperationError, RuntimeUnavailable
from finks.runtime import Deadline
from finks.settings import Settings


class FakeRuntime:
    """In-memory ContainerRuntime. Flip the ``fail_*`` attributes to inject failures."""

    def __init__(self):
        self.available = True
        self.fail_pull: set[str] = set()
        self.fail_create = False
        self.fail_start = False
        self.fail_remove = False
        self.fail_connect = False

        self.containers: dict[str, dict] = {}
        self.networks: dict[str, NetworkInfo] = {}
        self.calls: list[tuple] = []
        self._next_id = 0

    def _id(self) -> str:
        self._next_id += 1
        return f"{self._next_id:064x}"

    def _get(self, name: str) -> dict:
        if name not in self.containers:
            raise NotFound(f"container {name} not found")
        return self.containers[name]

    # test helpers

    def add_container(self, name: str, image: str = "busybox:latest", state: str = "running") -> None:
        self.containers[name] = {"id": self._id(), "image": image, "state": state, "spec": None, "networks": set()}

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    # ContainerRuntime

    def ping(self, deadline: Deadline) -> None:
        self.calls.append(("ping",))
        if not self.available:
            raise RuntimeUnavailable("docker daemon is not running - please start Docker")

    def pull(self, image: str, deadline: Deadline) -> None:
        self.calls.append(("pull", image))
        if image in self.fail_pull:
            raise ImagePullFailure(f"failed to pull image {image}: manifest unknown")

    def create(self, spec: RunSpec, deadline: Deadline) -> str:
        self.calls.append(("create", spec.name))
        if self.fail_create:
            raise RuntimeOperationError(f"failed to create container {spec.name}: injected")
        if spec.name in self.containers:
            raise RuntimeOperationError(f"failed to create container {spec.name}: Conflict")
        cid = self._id()
        nets = {spec.network} if spec.network else set()
        self.containers[spec.name] = {"id": cid, "image": spec.image, "state": "created", "spec": spec, "networks": nets}
        return cid

    def start(self, name: str, deadline: Deadline) -> None:
        self.calls.append(("start", name))
        c = self._get(name)
        if self.fail_start:
            raise RuntimeOperationError(f"failed to start container {name}: injected")
        c["state"] = "running"

    def stop(self, name: str, deadline: Deadline) -> None:
        self.calls.append(("stop", name))
        self._get(name)["state"] = "exited"

    def remove(self, name: str, force: bool, deadline: Deadline) -> None:
        self.calls.append(("remove", name, force))
        c = self._get(name)
        if self.fail_remove:
            raise RuntimeOperationError(f"failed to remove container {name}: injected")
        if c["state"] == "running" and not force:
            raise RuntimeOperationError(f"failed to remove container {name}: container is running")
        del self.containers[name]

    def list(self, deadline: Deadline) -> list[ContainerSummary]:
        self.calls.append(("list",))
        texts = {"running": "Up 2 minutes", "exited": "Exited (0) 5 seconds ago", "created": "Created"}
        return [
            ContainerSummary(name=name, image=c["image"], status=texts[c["state"]])
            for name, c in self.containers.items()
        ]

    def exists(self, name: str, deadline: Deadline) -> bool:
        return name in self.containers

    def status(self, name: str, deadline: Deadline) -> str:
        return self._get(name)["state"]

    def is_running(self, name: str, deadline: Deadline) -> bool:
        return self.status(name, deadline) == "running"

    def create_network(self, name: str, driver: str, labels: dict[str, str], deadline: Deadline) -> str:
        self.calls.append(("create_network", name))
        nid = self._id()
        self.networks[name] = NetworkInfo(
            id=nid, name=name, driver=driver, subnet="172.20.0.0/16", gateway="172.20.0.1", labels=dict(labels)
        )
        return nid

    def list_networks(self, deadline: Deadline) -> list[NetworkInfo]:
        return list(self.networks.values())

    def network_exists(self, name: str, deadline: Deadline) -> bool:
        return name in self.networks

    def inspect_network(self, name: str, deadline: Deadline) -> NetworkInfo:
        if name not in self.networks:
            raise NotFound(f"network {name} not found")
        return self.networks[name]

    def connect_network(self, network: str, container: str, deadline: Deadline) -> None:
        self.calls.append(("connect_network", network, container))
        if self.fail_connect:
            raise RuntimeOperationError(f"failed to connect {container} to network {network}: injected")
        if network not in self.networks:
            raise NotFound(f"network {network} not found")
        self._get(container)["networks"].add(network)

    def disconnect_network(self, network: str, container: str, deadline: Deadline) -> None:
        self.calls.append(("disconnect_network", network, container))
        if network not in self.networks:
            raise NotFound(f"network {network} not found")
        self._get(container)["networks"].discard(network)

    def remove_network(self, name: str, deadline: Deadline) -> None:
        self.calls.append(("remove_network", name))
        if name not in self.networks:
            raise NotFound(f"network {name} not found")
        del self.networks[name]


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=str(tmp_path / "finks"), control_timeout_s=5, deploy_timeout_s=10)


@pytest.fixture
def ctx(settings, runtime):
    return Context(settings=settings, runtime=runtime, events=EventLog(settings.events_path))
