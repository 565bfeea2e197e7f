from __future__ import annotations

from . import __version__
from .context import Context
from .docker_ops import CONTAINER_PREFIX, NetworkInfo
from .errors import AlreadyExists, ValidationFailure
from .runtime import Deadline


LABEL_MANAGED_BY = "finks.managed-by"
LABEL_CREATED_BY = "finks.created-by"
LABEL_VERSION = "finks.version"

DEFAULT_DRIVER = "bridge"


def default_labels() -> dict[str, str]:
    return {
        LABEL_MANAGED_BY: "finks",
        LABEL_CREATED_BY: "finks-network-manager",
        LABEL_VERSION: __version__,
    }


class NetworkProvisioner:
    """Get-or-create for the docker networks finks relies on."""

    def __init__(self, ctx: Context):
        self.ctx = ctx
        self.runtime = ctx.runtime

    def _deadline(self, deadline: Deadline | None) -> Deadline:
        return deadline or self.ctx.control_deadline()

    def ensure_network(
        self,
        name: str,
        driver: str = DEFAULT_DRIVER,
        labels: dict[str, str] | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        """Return the id of network ``name``, creating it if it does not exist.

        An existing network is returned as is; its driver and labels are not
        compared with the requested ones (whoever created it first wins).
        """
        deadline = self._deadline(deadline)
        if self.runtime.network_exists(name, deadline):
            return self.runtime.inspect_network(name, deadline).id

        merged = default_labels()
        merged.update(labels or {})
        network_id = self.runtime.create_network(name, driver, merged, deadline)
        self.ctx.events.log_event("INFO", f"Created docker network '{name}' ({driver}).")
        return network_id

    def ensure_app_network(self, deadline: Deadline | None = None) -> str:
        return self.ensure_network(self.ctx.settings.app_network, deadline=deadline)

    def ensure_proxy_network(self, deadline: Deadline | None = None) -> str:
        return self.ensure_network(self.ctx.settings.proxy_network, deadline=deadline)

    def list_managed(self, deadline: Deadline | None = None) -> list[NetworkInfo]:
        nets = self.runtime.list_networks(self._deadline(deadline))
        return sorted((n for n in nets if n.name.startswith(CONTAINER_PREFIX)), key=lambda n: n.name)

    def create(self, name: str, driver: str = DEFAULT_DRIVER, deadline: Deadline | None = None) -> NetworkInfo:
        """Create ``finks-<name>``; unlike ensure_network an existing network is an error."""
        if not name or any(ch.isspace() for ch in name):
            raise ValidationFailure("network name cannot be empty or contain spaces")
        full = name if name.startswith(CONTAINER_PREFIX) else f"{CONTAINER_PREFIX}{name}"
        deadline = self._deadline(deadline)
        self.runtime.ping(deadline)
        if self.runtime.network_exists(full, deadline):
            raise AlreadyExists(f"network {full} already exists")
        self.runtime.create_network(full, driver or DEFAULT_DRIVER, default_labels(), deadline)
        self.ctx.events.log_event("INFO", f"Created docker network '{full}' ({driver}).")
        return self.runtime.inspect_network(full, deadline)

    def remove(self, name: str, deadline: Deadline | None = None) -> None:
        deadline = self._deadline(deadline)
        self.runtime.ping(deadline)
        self.runtime.remove_network(name, deadline)
        self.ctx.events.log_event("INFO", f"Removed docker network '{name}'.")

    def connect(self, network: str, container: str, deadline: Deadline | None = None) -> None:
        deadline = self._deadline(deadline)
        self.runtime.ping(deadline)
        self.runtime.connect_network(network, container, deadline)
        self.ctx.events.log_event("INFO", f"Connected '{container}' to network '{network}'.")

    def disconnect(self, network: str, container: str, deadline: Deadline | None = None) -> None:
        deadline = self._deadline(deadline)
        self.runtime.ping(deadline)
        self.runtime.disconnect_network(network, container, deadline)
        self.ctx.events.log_event("INFO", f"Disconnected '{container}' from network '{network}'.")
