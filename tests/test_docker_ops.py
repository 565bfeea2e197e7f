from unittest.mock import MagicMock

import docker
import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound
from docker.errors import NotFound as DockerNotFound

from finks import errors
from finks.docker_ops import (
    DockerRuntime,
    RunSpec,
    app_name_from_container,
    container_name,
    container_port,
    parse_port_spec,
    validate_app_name,
    validate_env,
)
from finks.runtime import Deadline


@pytest.mark.parametrize(
    "spec,expected",
    [
        (None, {}),
        ("", {}),
        ("8080:80", {"80/tcp": 8080}),
        ("80", {"80/tcp": None}),
        ("5353:53/udp", {"53/udp": 5353}),
        ("127.0.0.1:8080:80", {"80/tcp": ("127.0.0.1", 8080)}),
        ("8080:80, 8443:443", {"80/tcp": 8080, "443/tcp": 8443}),
    ],
)
def test_parse_port_spec(spec, expected):
    assert parse_port_spec(spec) == expected


@pytest.mark.parametrize("spec", ["abc", "8080:", "70000:80", "8080:0", "127.0.0.1:80:80:80"])
def test_parse_port_spec_rejects(spec):
    with pytest.raises(errors.ValidationFailure):
        parse_port_spec(spec)


def test_container_port():
    assert container_port("8080:80") == "80"
    assert container_port("3000") == "3000"
    assert container_port(None) is None


def test_container_naming():
    assert container_name("web") == "finks-web"
    assert app_name_from_container("/finks-web") == "web"
    assert app_name_from_container("finks-my.app") == "my.app"
    assert app_name_from_container("postgres") is None


@pytest.mark.parametrize("name", ["web", "my-app", "api_v2", "a.b", "X1"])
def test_validate_app_name_accepts(name):
    validate_app_name(name)


@pytest.mark.parametrize("name", ["", "-web", ".hidden", "has space", "a/b", "x" * 64])
def test_validate_app_name_rejects(name):
    with pytest.raises(errors.ValidationFailure):
        validate_app_name(name)


def test_validate_env():
    validate_env({"PATH": "/bin", "_X": "1", "DB_URL": "x=y"})
    with pytest.raises(errors.ValidationFailure):
        validate_env({"BAD-KEY": "1"})


def _runtime():
    client = MagicMock()
    return DockerRuntime(client=client), client


def test_create_passes_restart_policy_and_bindings():
    rt, client = _runtime()
    client.containers.create.return_value = MagicMock(id="abc123")
    spec = RunSpec(
        name="finks-web",
        image="nginx:latest",
        ports={"80/tcp": 8080},
        env={"A": "1"},
        volumes=["/srv:/data"],
        labels={"finks.app": "web"},
        network="finks-network",
    )

    assert rt.create(spec, Deadline(5)) == "abc123"

    args, kwargs = client.containers.create.call_args
    assert args == ("nginx:latest", None)
    assert kwargs["name"] == "finks-web"
    assert kwargs["restart_policy"] == {"Name": "unless-stopped"}
    assert kwargs["ports"] == {"80/tcp": 8080}
    assert kwargs["environment"] == {"A": "1"}
    assert kwargs["volumes"] == ["/srv:/data"]
    assert kwargs["network"] == "finks-network"


def test_client_timeout_follows_deadline():
    rt, client = _runtime()
    rt.ping(Deadline(5))
    assert 0.5 <= client.api.timeout <= 5


def test_expired_deadline_stops_before_calling_docker():
    rt, client = _runtime()
    d = Deadline(5)
    d.cancel()
    with pytest.raises(errors.DeadlineExceeded):
        rt.start("finks-web", d)
    client.containers.get.assert_not_called()


def test_ping_failure_is_runtime_unavailable():
    rt, client = _runtime()
    client.ping.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(errors.RuntimeUnavailable):
        rt.ping(Deadline(5))


def test_from_env_failure_is_runtime_unavailable(monkeypatch):
    def boom(**kwargs):
        raise DockerException("Error while fetching server API version")

    monkeypatch.setattr(docker, "from_env", boom)
    with pytest.raises(errors.RuntimeUnavailable):
        DockerRuntime().ping(Deadline(5))


@pytest.mark.parametrize(
    "exc,expected",
    [
        (ImageNotFound("no such image"), errors.ImagePullFailure),
        (APIError("manifest unknown"), errors.ImagePullFailure),
        (requests.exceptions.ReadTimeout("slow"), errors.DeadlineExceeded),
        (requests.exceptions.ConnectionError("refused"), errors.RuntimeUnavailable),
    ],
)
def test_pull_errors(exc, expected):
    rt, client = _runtime()
    client.images.pull.side_effect = exc
    with pytest.raises(expected):
        rt.pull("nginx:nope", Deadline(5))


@pytest.mark.parametrize(
    "exc,expected",
    [
        (DockerNotFound("No such container"), errors.NotFound),
        (APIError("conflict"), errors.RuntimeOperationError),
        (requests.exceptions.ReadTimeout("slow"), errors.DeadlineExceeded),
        (requests.exceptions.ConnectionError("refused"), errors.RuntimeUnavailable),
    ],
)
def test_error_translation(exc, expected):
    rt, client = _runtime()
    client.containers.get.side_effect = exc
    with pytest.raises(expected):
        rt.stop("finks-web", Deadline(5))


def test_exists_and_status():
    rt, client = _runtime()
    client.containers.get.return_value = MagicMock(status="exited")
    assert rt.exists("finks-web", Deadline(5))
    assert rt.status("finks-web", Deadline(5)) == "exited"
    assert not rt.is_running("finks-web", Deadline(5))

    client.containers.get.side_effect = DockerNotFound("No such container")
    assert not rt.exists("finks-web", Deadline(5))


def test_list_reads_sparse_attrs():
    rt, client = _runtime()
    client.containers.list.return_value = [
        MagicMock(
            attrs={
                "Names": ["/finks-web"],
                "Image": "nginx:latest",
                "Status": "Up 3 minutes",
                "Ports": [{"IP": "0.0.0.0", "PrivatePort": 80, "PublicPort": 8080, "Type": "tcp"}],
            }
        ),
        MagicMock(attrs={"Names": ["/finks-api"], "Image": "python:3.12", "Status": "Exited (1) 2 hours ago"}),
    ]

    out = rt.list(Deadline(5))

    client.containers.list.assert_called_once_with(all=True, sparse=True)
    assert [(c.name, c.status) for c in out] == [
        ("finks-web", "Up 3 minutes"),
        ("finks-api", "Exited (1) 2 hours ago"),
    ]
    assert out[0].ports == "0.0.0.0:8080->80/tcp"


def test_networks():
    rt, client = _runtime()
    net = MagicMock(
        attrs={
            "Id": "n1",
            "Name": "finks-network",
            "Driver": "bridge",
            "IPAM": {"Config": [{"Subnet": "172.20.0.0/16", "Gateway": "172.20.0.1"}]},
            "Labels": {"finks.managed-by": "finks"},
        }
    )
    client.networks.list.return_value = [net]
    client.networks.get.return_value = net

    assert rt.network_exists("finks-network", Deadline(5))
    assert not rt.network_exists("other", Deadline(5))
    info = rt.inspect_network("finks-network", Deadline(5))
    assert (info.subnet, info.gateway) == ("172.20.0.0/16", "172.20.0.1")

    rt.connect_network("finks-network", "finks-web", Deadline(5))
    net.connect.assert_called_once_with("finks-web")


def test_stop_request_fits_inside_deadline():
    rt, client = _runtime()
    deadline = Deadline(20)

    rt.stop("finks-web", deadline)

    grace = client.containers.get.return_value.stop.call_args.kwargs["timeout"]
    assert 1 <= grace <= 10
    assert client.api.timeout + grace <= 20
