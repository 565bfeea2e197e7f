import pytest

from finks import __version__
from finks.errors import AlreadyExists, NotFound, RuntimeUnavailable, ValidationFailure
from finks.networks import LABEL_MANAGED_BY, LABEL_VERSION, NetworkProvisioner


def test_ensure_network_is_idempotent(ctx, runtime):
    nets = NetworkProvisioner(ctx)

    first = nets.ensure_network("finks-network")
    second = nets.ensure_network("finks-network")

    assert first == second
    assert [c for c in runtime.calls if c[0] == "create_network"] == [("create_network", "finks-network")]
    labels = runtime.networks["finks-network"].labels
    assert labels[LABEL_MANAGED_BY] == "finks"
    assert labels[LABEL_VERSION] == __version__


def test_existing_network_wins_over_requested_driver(ctx, runtime):
    nets = NetworkProvisioner(ctx)
    nets.ensure_network("finks-shared", driver="bridge")
    nets.ensure_network("finks-shared", driver="overlay", labels={"x": "y"})

    assert runtime.networks["finks-shared"].driver == "bridge"
    assert "x" not in runtime.networks["finks-shared"].labels


def test_ensure_app_and_proxy_networks(ctx, runtime, settings):
    nets = NetworkProvisioner(ctx)
    nets.ensure_app_network()
    nets.ensure_proxy_network()

    assert set(runtime.networks) == {settings.app_network, settings.proxy_network}


def test_create_prefixes_name(ctx, runtime):
    info = NetworkProvisioner(ctx).create("backend", driver="bridge")

    assert info.name == "finks-backend"
    assert "finks-backend" in runtime.networks


def test_create_existing_is_an_error(ctx):
    nets = NetworkProvisioner(ctx)
    nets.create("backend")
    with pytest.raises(AlreadyExists):
        nets.create("finks-backend")


@pytest.mark.parametrize("name", ["", "has space"])
def test_create_rejects_bad_names(ctx, name):
    with pytest.raises(ValidationFailure):
        NetworkProvisioner(ctx).create(name)


def test_list_managed_filters_and_sorts(ctx, runtime):
    nets = NetworkProvisioner(ctx)
    nets.ensure_network("finks-zeta")
    nets.ensure_network("finks-alpha")
    runtime.create_network("bridge", "bridge", {}, ctx.control_deadline())

    assert [n.name for n in nets.list_managed()] == ["finks-alpha", "finks-zeta"]


def test_connect_disconnect_and_remove(ctx, runtime):
    nets = NetworkProvisioner(ctx)
    nets.create("backend")
    runtime.add_container("finks-web")

    nets.connect("finks-backend", "finks-web")
    assert "finks-backend" in runtime.containers["finks-web"]["networks"]

    nets.disconnect("finks-backend", "finks-web")
    assert "finks-backend" not in runtime.containers["finks-web"]["networks"]

    nets.remove("finks-backend")
    assert "finks-backend" not in runtime.networks
    with pytest.raises(NotFound):
        nets.remove("finks-backend")


def test_create_requires_runtime(ctx, runtime):
    runtime.available = False
    with pytest.raises(RuntimeUnavailable):
        NetworkProvisioner(ctx).create("backend")
    assert runtime.networks == {}
