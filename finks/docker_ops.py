from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound
from docker.errors import NotFound as DockerNotFound

from . import errors
from .runtime import Deadline


CONTAINER_PREFIX = "finks-"

APP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,62}$")
ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PORT_RE = re.compile(
    r"^(?:(?P<ip>\d{1,3}(?:\.\d{1,3}){3}):)?(?:(?P<host>\d+):)?(?P<container>\d+)(?:/(?P<proto>tcp|udp|sctp))?$"
)


def container_name(app_name: str) -> str:
    return f"{CONTAINER_PREFIX}{app_name}"


def app_name_from_container(name: str) -> str | None:
    name = name.lstrip("/")
    if not name.startswith(CONTAINER_PREFIX):
        return None
    return name[len(CONTAINER_PREFIX):]


def validate_app_name(name: str) -> None:
    if not APP_NAME_RE.match(name or ""):
        raise errors.ValidationFailure(
            "Invalid application name. Use letters, numbers, '_', '.' and '-', starting with a letter or number (max 63 chars)."
        )


def validate_env(env: dict[str, str]) -> None:
    for key in env:
        if not ENV_KEY_RE.match(key):
            raise errors.ValidationFailure(f"Invalid environment variable name: {key!r}")


def _valid_port(value: str) -> int:
    n = int(value)
    if not 1 <= n <= 65535:
        raise errors.ValidationFailure(f"Port out of range: {value}")
    return n


def parse_port_spec(spec: str | None) -> dict[str, Any]:
    """Translate ``[ip:][host:]container[/proto]`` mappings (comma separated) to SDK ``ports``.

    ``"8080:80"`` -> ``{"80/tcp": 8080}``; ``"80"`` -> ``{"80/tcp": None}`` (random host port).
    """
    ports: dict[str, Any] = {}
    if not spec:
        return ports
    for part in spec.split(","):
        part = part.strip()
        m = _PORT_RE.match(part)
        if not m:
            raise errors.ValidationFailure(f"Invalid port mapping: {part!r} (expected e.g. 8080:80)")
        if m.group("ip") and not m.group("host"):
            raise errors.ValidationFailure(f"Invalid port mapping: {part!r} (host port required with an IP)")
        key = f"{_valid_port(m.group('container'))}/{m.group('proto') or 'tcp'}"
        host = _valid_port(m.group("host")) if m.group("host") else None
        if m.group("ip"):
            ports[key] = (m.group("ip"), host)
        else:
            ports[key] = host
    return ports


def container_port(spec: str | None) -> str | None:
    """The container side of the first mapping; what the proxy should target."""
    ports = parse_port_spec(spec)
    if not ports:
        return None
    first = next(iter(ports))
    return first.split("/", 1)[0]


@dataclass(frozen=True)
class RunSpec:
    name: str
    image: str
    ports: dict[str, Any] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    volumes: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    network: str | None = None
    restart_policy: str = "unless-stopped"
    command: list[str] | None = None


@dataclass(frozen=True)
class ContainerSummary:
    name: str
    image: str
    status: str
    ports: str = ""


@dataclass(frozen=True)
class NetworkInfo:
    id: str
    name: str
    driver: str
    subnet: str = ""
    gateway: str = ""
    labels: dict[str, str] = field(default_factory=dict)


class ContainerRuntime(Protocol):
    """Everything finks asks of the container engine. Every call takes a deadline."""

    def ping(self, deadline: Deadline) -> None: ...

    def pull(self, image: str, deadline: Deadline) -> None: ...

    def create(self, spec: RunSpec, deadline: Deadline) -> str: ...

    def start(self, name: str, deadline: Deadline) -> None: ...

    def stop(self, name: str, deadline: Deadline) -> None: ...

    def remove(self, name: str, force: bool, deadline: Deadline) -> None: ...

    def list(self, deadline: Deadline) -> list[ContainerSummary]: ...

    def exists(self, name: str, deadline: Deadline) -> bool: ...

    def status(self, name: str, deadline: Deadline) -> str: ...

    def is_running(self, name: str, deadline: Deadline) -> bool: ...

    def create_network(self, name: str, driver: str, labels: dict[str, str], deadline: Deadline) -> str: ...

    def list_networks(self, deadline: Deadline) -> list[NetworkInfo]: ...

    def network_exists(self, name: str, deadline: Deadline) -> bool: ...

    def inspect_network(self, name: str, deadline: Deadline) -> NetworkInfo: ...

    def connect_network(self, network: str, container: str, deadline: Deadline) -> None: ...

    def disconnect_network(self, network: str, container: str, deadline: Deadline) -> None: ...

    def remove_network(self, name: str, deadline: Deadline) -> None: ...


def _format_ports(raw: list[dict[str, Any]] | None) -> str:
    out: list[str] = []
    for p in raw or []:
        private = f"{p.get('PrivatePort')}/{p.get('Type', 'tcp')}"
        if p.get("PublicPort"):
            out.append(f"{p.get('IP', '0.0.0.0')}:{p['PublicPort']}->{private}")
        else:
            out.append(private)
    return ", ".join(out)


def _network_info(attrs: dict[str, Any]) -> NetworkInfo:
    ipam = (attrs.get("IPAM") or {}).get("Config") or []
    first = ipam[0] if ipam else {}
    return NetworkInfo(
        id=attrs.get("Id", ""),
        name=attrs.get("Name", ""),
        driver=attrs.get("Driver", ""),
        subnet=first.get("Subnet", "") or "",
        gateway=first.get("Gateway", "") or "",
        labels=dict(attrs.get("Labels") or {}),
    )


@contextmanager
def _translate(op: str, subject: str) -> Iterator[None]:
    """Map SDK and transport errors onto the finks error taxonomy."""
    try:
        yield
    except errors.FinksError:
        raise
    except ImageNotFound as e:
        raise errors.RuntimeOperationError(f"failed to {op} {subject}: {e.explanation or e}") from e
    except DockerNotFound as e:
        raise errors.NotFound(f"{subject} not found") from e
    except requests.exceptions.Timeout as e:
        raise errors.DeadlineExceeded(f"{op} {subject} timed out") from e
    except requests.exceptions.ConnectionError as e:
        raise errors.RuntimeUnavailable(f"docker daemon is not reachable: {e}") from e
    except APIError as e:
        raise errors.RuntimeOperationError(f"failed to {op} {subject}: {e.explanation or e}") from e
    except DockerException as e:
        raise errors.RuntimeOperationError(f"failed to {op} {subject}: {e}") from e


class DockerRuntime:
    """ContainerRuntime backed by the Docker Engine SDK."""

    def __init__(self, client: docker.DockerClient | None = None):
        self._client_obj = client

    def _client(self, deadline: Deadline, op: str) -> docker.DockerClient:
        deadline.check(op)
        if self._client_obj is None:
            try:
                self._client_obj = docker.from_env(timeout=max(1, int(deadline.remaining())))
            except DockerException as e:
                raise errors.RuntimeUnavailable(
                    f"docker daemon is not running - please start Docker ({e})"
                ) from e
        # Bound every HTTP request by what is left of the deadline.
        self._client_obj.api.timeout = max(0.5, deadline.remaining())
        return self._client_obj

    def close(self) -> None:
        if self._client_obj is not None:
            self._client_obj.close()

    def ping(self, deadline: Deadline) -> None:
        c = self._client(deadline, "ping")
        try:
            c.ping()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise errors.RuntimeUnavailable(f"docker daemon is not running - please start Docker ({e})") from e

    def pull(self, image: str, deadline: Deadline) -> None:
        c = self._client(deadline, "pull")
        try:
            c.images.pull(image)
        except requests.exceptions.Timeout as e:
            raise errors.DeadlineExceeded(f"pull {image} timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise errors.RuntimeUnavailable(f"docker daemon is not reachable: {e}") from e
        except (ImageNotFound, APIError) as e:
            raise errors.ImagePullFailure(f"failed to pull image {image}: {e}") from e

    def create(self, spec: RunSpec, deadline: Deadline) -> str:
        c = self._client(deadline, "create")
        with _translate("create", f"container {spec.name}"):
            kwargs: dict[str, Any] = {
                "name": spec.name,
                "ports": spec.ports or None,
                "environment": spec.env or None,
                "volumes": spec.volumes or None,
                "labels": spec.labels or None,
                "restart_policy": {"Name": spec.restart_policy},
            }
            if spec.network:
                kwargs["network"] = spec.network
            container = c.containers.create(spec.image, spec.command, **kwargs)
            return container.id

    def start(self, name: str, deadline: Deadline) -> None:
        c = self._client(deadline, "start")
        with _translate("start", f"container {name}"):
            c.containers.get(name).start()

    def stop(self, name: str, deadline: Deadline) -> None:
        c = self._client(deadline, "stop")
        with _translate("stop", f"container {name}"):
            grace = max(1, min(10, int(deadline.remaining() / 2)))
            # The SDK adds the grace period on top of the request timeout.
            c.api.timeout = max(0.5, deadline.remaining() - grace)
            c.containers.get(name).stop(timeout=grace)

    def remove(self, name: str, force: bool, deadline: Deadline) -> None:
        c = self._client(deadline, "remove")
        with _translate("remove", f"container {name}"):
            c.containers.get(name).remove(force=force)

    def list(self, deadline: Deadline) -> list[ContainerSummary]:
        c = self._client(deadline, "list")
        with _translate("list", "containers"):
            containers = c.containers.list(all=True, sparse=True)
        out: list[ContainerSummary] = []
        for x in containers:
            attrs = x.attrs
            names = attrs.get("Names") or []
            name = names[0].lstrip("/") if names else (x.name or "")
            out.append(
                ContainerSummary(
                    name=name,
                    image=attrs.get("Image", ""),
                    status=attrs.get("Status") or attrs.get("State") or "",
                    ports=_format_ports(attrs.get("Ports")),
                )
            )
        return out

    def exists(self, name: str, deadline: Deadline) -> bool:
        c = self._client(deadline, "inspect")
        try:
            with _translate("inspect", f"container {name}"):
                c.containers.get(name)
            return True
        except errors.NotFound:
            return False

    def status(self, name: str, deadline: Deadline) -> str:
        c = self._client(deadline, "inspect")
        with _translate("inspect", f"container {name}"):
            return c.containers.get(name).status

    def is_running(self, name: str, deadline: Deadline) -> bool:
        return self.status(name, deadline) == "running"

    def create_network(self, name: str, driver: str, labels: dict[str, str], deadline: Deadline) -> str:
        c = self._client(deadline, "create")
        with _translate("create", f"network {name}"):
            return c.networks.create(name, driver=driver, labels=labels or None).id

    def list_networks(self, deadline: Deadline) -> list[NetworkInfo]:
        c = self._client(deadline, "list")
        with _translate("list", "networks"):
            return [_network_info(n.attrs) for n in c.networks.list()]

    def network_exists(self, name: str, deadline: Deadline) -> bool:
        return any(n.name == name for n in self.list_networks(deadline))

    def inspect_network(self, name: str, deadline: Deadline) -> NetworkInfo:
        c = self._client(deadline, "inspect")
        with _translate("inspect", f"network {name}"):
            return _network_info(c.networks.get(name).attrs)

    def connect_network(self, network: str, container: str, deadline: Deadline) -> None:
        c = self._client(deadline, "connect")
        with _translate("connect", f"{container} to network {network}"):
            c.networks.get(network).connect(container)

    def disconnect_network(self, network: str, container: str, deadline: Deadline) -> None:
        c = self._client(deadline, "disconnect")
        with _translate("disconnect", f"{container} from network {network}"):
            c.networks.get(network).disconnect(container)

    def remove_network(self, name: str, deadline: Deadline) -> None:
        c = self._client(deadline, "remove")
        with _translate("remove", f"network {name}"):
            c.networks.get(name).remove()
