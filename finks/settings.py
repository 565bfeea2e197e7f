from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def default_data_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".finks")


@dataclass(frozen=True)
class Settings:
    # Storage
    data_dir: str = ""
    enable_events: bool = True

    # Networks
    app_network: str = "finks-network"
    proxy_network: str = "finks-traefik"

    # Proxy
    proxy_container: str = "finks-traefik"
    proxy_image: str = "traefik:v3.0"
    acme_email: str = "admin@example.com"
    dashboard_port: int = 8080

    # Deadlines
    control_timeout_s: int = 30
    deploy_timeout_s: int = 300

    def __post_init__(self) -> None:
        if not self.data_dir:
            object.__setattr__(self, "data_dir", default_data_dir())

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from ``FINKS_*`` environment variables.

        Called once per command invocation; nothing is cached at import time.
        """
        return cls(
            data_dir=os.getenv("FINKS_DATA_DIR", "") or default_data_dir(),
            enable_events=_env_bool("FINKS_EVENTS", True),
            app_network=os.getenv("FINKS_NETWORK", cls.app_network),
            proxy_network=os.getenv("FINKS_PROXY_NETWORK", cls.proxy_network),
            proxy_image=os.getenv("FINKS_PROXY_IMAGE", cls.proxy_image),
            acme_email=os.getenv("FINKS_ACME_EMAIL", cls.acme_email),
            dashboard_port=_env_int("FINKS_DASHBOARD_PORT", cls.dashboard_port),
            control_timeout_s=max(1, _env_int("FINKS_CONTROL_TIMEOUT_S", cls.control_timeout_s)),
            deploy_timeout_s=max(1, _env_int("FINKS_DEPLOY_TIMEOUT_S", cls.deploy_timeout_s)),
        )

    @property
    def apps_path(self) -> str:
        return os.path.join(self.data_dir, "apps.json")

    @property
    def proxy_path(self) -> str:
        return os.path.join(self.data_dir, "proxy.json")

    @property
    def events_path(self) -> str:
        return os.path.join(self.data_dir, "events.db")

    @property
    def lock_path(self) -> str:
        return os.path.join(self.data_dir, ".lock")
