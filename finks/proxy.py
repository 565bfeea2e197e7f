from __future__ import annotations

from dataclasses import dataclass

from .context import Context
from .docker_ops import RunSpec, parse_port_spec
from .errors import CreateOrStartFailure, NotFound, ValidationFailure
from .health import check_dashboard
from .models import (
    ENTRYPOINT_TRAEFIK,
    ENTRYPOINT_WEB,
    ENTRYPOINT_WEBSECURE,
    AppStatus,
    ProxyConfig,
    TLSMode,
)
from .networks import LABEL_MANAGED_BY, NetworkProvisioner
from .reconciler import create_and_start
from .registry import default_proxy_config, exclusive_lock, load_proxy_config, save_proxy_config
from .runtime import Deadline, utc_now


DOCKER_SOCKET_MOUNT = "/var/run/docker.sock:/var/run/docker.sock:ro"
CERT_VOLUME_MOUNT = "finks-letsencrypt:/letsencrypt"
LABEL_ROLE = "finks.role"


@dataclass(frozen=True)
class ProxyStatus:
    installed: bool
    container_status: str
    is_running: bool
    network_exists: bool
    tls_mode: TLSMode
    dashboard_url: str | None = None
    dashboard_reachable: bool = False
    dashboard_message: str = ""


def build_environment(cfg: ProxyConfig, app_network: str) -> dict[str, str]:
    """Traefik static configuration, passed as TRAEFIK_* environment variables."""
    env = {
        "TRAEFIK_API_DASHBOARD": "true",
        "TRAEFIK_PROVIDERS_DOCKER": "true",
        "TRAEFIK_PROVIDERS_DOCKER_EXPOSEDBYDEFAULT": "false",
        "TRAEFIK_PROVIDERS_DOCKER_NETWORK": app_network,
        "TRAEFIK_ENTRYPOINTS_WEB_ADDRESS": cfg.entrypoints.get(ENTRYPOINT_WEB, ":80"),
        "TRAEFIK_ENTRYPOINTS_TRAEFIK_ADDRESS": cfg.entrypoints.get(ENTRYPOINT_TRAEFIK, ":8080"),
    }
    if cfg.tls_mode == TLSMode.LOCAL:
        env["TRAEFIK_API_INSECURE"] = "true"
    else:
        env["TRAEFIK_ENTRYPOINTS_WEBSECURE_ADDRESS"] = cfg.entrypoints.get(ENTRYPOINT_WEBSECURE, ":443")
        env["TRAEFIK_CERTIFICATESRESOLVERS_LETSENCRYPT_ACME_TLSCHALLENGE"] = "true"
        env["TRAEFIK_CERTIFICATESRESOLVERS_LETSENCRYPT_ACME_EMAIL"] = cfg.email or ""
        env["TRAEFIK_CERTIFICATESRESOLVERS_LETSENCRYPT_ACME_STORAGE"] = "/letsencrypt/acme.json"
    return env


def build_port_mapping(tls_mode: TLSMode, dashboard_port: int) -> str:
    mapping = f"80:80,{dashboard_port}:8080"
    if tls_mode == TLSMode.MANAGED:
        mapping += ",443:443"
    return mapping


def build_volumes(tls_mode: TLSMode) -> list[str]:
    volumes = [DOCKER_SOCKET_MOUNT]
    if tls_mode == TLSMode.MANAGED:
        volumes.append(CERT_VOLUME_MOUNT)
    return volumes


class ProxyInstaller:
    """Runs Traefik itself as a managed container next to the apps it routes."""

    def __init__(self, ctx: Context):
        self.ctx = ctx
        self.settings = ctx.settings
        self.runtime = ctx.runtime
        self.events = ctx.events
        self.networks = NetworkProvisioner(ctx)

    def load_config(self) -> ProxyConfig:
        return load_proxy_config(self.settings.proxy_path, default_proxy_config(self.settings))

    def build_run_spec(self, cfg: ProxyConfig) -> RunSpec:
        return RunSpec(
            name=cfg.container_name,
            image=cfg.image,
            ports=parse_port_spec(build_port_mapping(cfg.tls_mode, self.settings.dashboard_port)),
            env=build_environment(cfg, self.settings.app_network),
            volumes=build_volumes(cfg.tls_mode),
            labels={LABEL_MANAGED_BY: "finks", LABEL_ROLE: "proxy"},
            network=cfg.network,
        )

    def install(
        self,
        tls_mode: TLSMode = TLSMode.LOCAL,
        email: str | None = None,
        deadline: Deadline | None = None,
    ) -> ProxyConfig:
        """Make sure the proxy container exists and runs.

        An existing container is only started; its TLS mode is not changed.
        """
        if tls_mode == TLSMode.MANAGED:
            email = email or self.settings.acme_email
            if "@" not in email or any(ch.isspace() for ch in email):
                raise ValidationFailure(f"invalid ACME email: {email!r}")

        deadline = deadline or self.ctx.deploy_deadline()
        self.runtime.ping(deadline)

        with exclusive_lock(self.settings.lock_path, deadline):
            cfg = self.load_config()
            self.networks.ensure_proxy_network(deadline)
            name = cfg.container_name

            if self.runtime.exists(name, deadline):
                if not self.runtime.is_running(name, deadline):
                    self.runtime.start(name, deadline)
                    self.events.log_event("INFO", f"Started existing proxy container {name}")
                cfg.status = AppStatus.RUNNING
                cfg.updated_at = utc_now()
                save_proxy_config(self.settings.proxy_path, cfg)
                return cfg

            cfg.tls_mode = tls_mode
            cfg.email = email if tls_mode == TLSMode.MANAGED else None
            self.runtime.pull(cfg.image, deadline)
            self.networks.ensure_app_network(deadline)

            now = utc_now()
            try:
                create_and_start(
                    self.runtime,
                    self.build_run_spec(cfg),
                    deadline,
                    self.settings.control_timeout_s,
                    connect_networks=[self.settings.app_network],
                )
            except CreateOrStartFailure as e:
                cfg.status = AppStatus.FAILED
                cfg.updated_at = now
                save_proxy_config(self.settings.proxy_path, cfg)
                self.events.log_event("ERROR", f"Proxy install failed, container rolled back: {e}")
                raise

            cfg.status = AppStatus.RUNNING
            cfg.created_at = cfg.created_at or now
            cfg.updated_at = now
            save_proxy_config(self.settings.proxy_path, cfg)

        self.events.log_event("INFO", f"Installed proxy {cfg.image} ({cfg.tls_mode.value} TLS)")
        return cfg

    def status(self, deadline: Deadline | None = None, probe: bool = True) -> ProxyStatus:
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)

        with exclusive_lock(self.settings.lock_path, deadline):
            cfg = self.load_config()
            name = cfg.container_name
            installed = self.runtime.exists(name, deadline)
            container_status = self.runtime.status(name, deadline) if installed else ""
            is_running = container_status == "running"
            network_exists = self.runtime.network_exists(cfg.network, deadline)

            observed = AppStatus.RUNNING if is_running else AppStatus.STOPPED
            if cfg.status != observed:
                cfg.status = observed
                cfg.updated_at = utc_now()
                save_proxy_config(self.settings.proxy_path, cfg)

        dashboard_url = None
        reachable, message = False, ""
        if is_running and cfg.tls_mode == TLSMode.LOCAL:
            base = f"http://localhost:{self.settings.dashboard_port}"
            dashboard_url = f"{base}/dashboard/"
            if probe:
                reachable, message, _ = check_dashboard(f"{base}/api/overview", timeout_s=min(2.0, deadline.remaining() or 0.1))

        return ProxyStatus(
            installed=installed,
            container_status=container_status,
            is_running=is_running,
            network_exists=network_exists,
            tls_mode=cfg.tls_mode,
            dashboard_url=dashboard_url,
            dashboard_reachable=reachable,
            dashboard_message=message,
        )

    def connect(self, network: str, deadline: Deadline | None = None) -> None:
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)
        name = self.settings.proxy_container
        if not self.runtime.exists(name, deadline):
            raise NotFound("proxy is not installed; run 'finks proxy install' first")
        self.runtime.connect_network(network, name, deadline)
        self.events.log_event("INFO", f"Connected proxy to network '{network}'")
