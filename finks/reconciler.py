from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from .context import Context
from .docker_ops import (
    ContainerRuntime,
    RunSpec,
    app_name_from_container,
    container_name,
    container_port,
    parse_port_spec,
    validate_app_name,
    validate_env,
)
from .errors import AlreadyExists, AppRunning, CreateOrStartFailure, FinksError, ValidationFailure
from .labels import (
    REDIRECT_SUFFIX,
    generate_labels,
    routing_intent,
    sanitize_name,
    validate_domain,
    validate_health_path,
    validate_port,
)
from .models import AppRecord, AppStatus
from .networks import LABEL_MANAGED_BY, NetworkProvisioner
from .registry import AppRegistry, exclusive_lock, read_proxy_config
from .runtime import Deadline, utc_now


LABEL_APP = "finks.app"


def create_and_start(
    runtime: ContainerRuntime,
    spec: RunSpec,
    deadline: Deadline,
    cleanup_timeout_s: float,
    connect_networks: list[str] | None = None,
) -> str:
    """Create, start and wire up a container, or leave nothing behind.

    Once the container exists, any later failure removes it again before
    CreateOrStartFailure is raised. The removal gets its own short deadline so
    it still runs when the failure was the operation's deadline running out.
    """
    try:
        container_id = runtime.create(spec, deadline)
    except FinksError as e:
        raise CreateOrStartFailure(f"failed to create container {spec.name}: {e}") from e

    try:
        runtime.start(spec.name, deadline)
        for net in connect_networks or []:
            runtime.connect_network(net, spec.name, deadline)
    except FinksError as e:
        cleanup_error: FinksError | None = None
        try:
            runtime.remove(spec.name, True, Deadline(cleanup_timeout_s))
        except FinksError as ce:
            cleanup_error = ce
        raise CreateOrStartFailure(f"failed to start container {spec.name}: {e}", cleanup_error=cleanup_error) from e

    return container_id


class Reconciler:
    """Applies lifecycle operations and keeps apps.json in line with the docker engine.

    Each public method is one command: probe the engine, take the data-dir
    lock, load the registry, act, persist.
    """

    def __init__(self, ctx: Context):
        self.ctx = ctx
        self.settings = ctx.settings
        self.runtime = ctx.runtime
        self.events = ctx.events
        self.networks = NetworkProvisioner(ctx)

    @contextmanager
    def _session(self, deadline: Deadline) -> Iterator[AppRegistry]:
        with exclusive_lock(self.settings.lock_path, deadline):
            yield AppRegistry.load(self.settings.apps_path, self.settings.data_dir)

    def get(self, name: str) -> AppRecord:
        return AppRegistry.load(self.settings.apps_path, self.settings.data_dir).get(name)

    def deploy(
        self,
        name: str,
        image: str,
        port: str | None = None,
        env: dict[str, str] | None = None,
        volumes: list[str] | None = None,
        domain: str | None = None,
        health_path: str | None = None,
        deadline: Deadline | None = None,
    ) -> AppRecord:
        env = dict(env or {})
        volumes = list(volumes or [])

        # Reject bad input before touching anything.
        validate_app_name(name)
        if not image or not image.strip():
            raise ValidationFailure("image cannot be empty")
        ports = parse_port_spec(port)
        target_port = container_port(port)
        validate_env(env)
        if domain is not None:
            validate_domain(domain)
            if target_port is not None:
                validate_port(target_port)
        if health_path is not None:
            validate_health_path(health_path)

        deadline = deadline or self.ctx.deploy_deadline()
        cname = container_name(name)
        if cname == self.settings.proxy_container:
            raise ValidationFailure(f"application name {name} is reserved for the proxy container {cname}")
        self.runtime.ping(deadline)

        with self._session(deadline) as reg:
            # The engine is the authority here: apps.json may be stale or missing.
            if self.runtime.exists(cname, deadline):
                raise AlreadyExists(f"application {name} already exists")
            if domain:
                self._check_identifier_collision(reg, name)

            self.runtime.pull(image, deadline)

            now = utc_now()
            record = AppRecord(
                name=name,
                image=image,
                port=port or None,
                env_vars=env,
                volumes=volumes,
                domain=domain,
                health_path=health_path,
                status=AppStatus.RUNNING,
                created_at=now,
                updated_at=now,
            )

            labels: dict[str, str] = {}
            network: str | None = None
            intent = routing_intent(
                record, read_proxy_config(self.settings), self.settings.app_network, target_port
            )
            if intent is not None:
                network = intent.network
                self.networks.ensure_network(network, deadline=deadline)
                labels = generate_labels(intent)
            labels[LABEL_MANAGED_BY] = "finks"
            labels[LABEL_APP] = name

            spec = RunSpec(
                name=cname,
                image=image,
                ports=ports,
                env=env,
                volumes=volumes,
                labels=labels,
                network=network,
            )

            try:
                create_and_start(self.runtime, spec, deadline, self.settings.control_timeout_s)
            except CreateOrStartFailure as e:
                record.status = AppStatus.FAILED
                reg.put(record)
                reg.save()
                self.events.log_event("ERROR", f"Deploy failed, container rolled back: {e}", app_name=name)
                raise

            reg.put(record)
            reg.save()

        self.events.log_event("INFO", f"Deployed {image} as {cname}", app_name=name)
        return record

    def _check_identifier_collision(self, reg: AppRegistry, name: str) -> None:
        ident = sanitize_name(name)
        for other in reg.records():
            if other.name == name or not other.domain:
                continue
            theirs = sanitize_name(other.name)
            # Managed TLS adds a <id>-redirect router next to <id>.
            if ident in (theirs, theirs + REDIRECT_SUFFIX) or theirs == ident + REDIRECT_SUFFIX:
                raise ValidationFailure(
                    f"application {name} (router '{ident}') would clash with the routers of {other.name} ('{theirs}')"
                )

    def start(self, name: str, deadline: Deadline | None = None) -> AppRecord:
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)
        with self._session(deadline) as reg:
            rec = reg.get(name)
            self.runtime.start(container_name(name), deadline)
            rec.status = AppStatus.RUNNING
            rec.updated_at = utc_now()
            reg.save()
        self.events.log_event("INFO", "Started", app_name=name)
        return rec

    def stop(self, name: str, deadline: Deadline | None = None) -> AppRecord:
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)
        with self._session(deadline) as reg:
            rec = reg.get(name)
            self.runtime.stop(container_name(name), deadline)
            rec.status = AppStatus.STOPPED
            rec.updated_at = utc_now()
            reg.save()
        self.events.log_event("INFO", "Stopped", app_name=name)
        return rec

    def remove(self, name: str, force: bool = False, deadline: Deadline | None = None) -> None:
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)
        with self._session(deadline) as reg:
            reg.get(name)
            cname = container_name(name)
            if self.runtime.exists(cname, deadline):
                if not force and self.runtime.is_running(cname, deadline):
                    raise AppRunning(f"application {name} is running; stop it first or use --force")
                self.runtime.remove(cname, force, deadline)
            else:
                self.events.log_event("WARN", f"Container {cname} was already gone", app_name=name)
            reg.delete(name)
            reg.save()
        self.events.log_event("INFO", "Removed", app_name=name)

    def list_apps(self, deadline: Deadline | None = None) -> list[AppRecord]:
        """Registry entries with their status re-derived from the engine.

        This is where drift heals: the corrected statuses are persisted before
        returning, even though the caller only asked to read.
        """
        deadline = deadline or self.ctx.control_deadline()
        self.runtime.ping(deadline)
        with self._session(deadline) as reg:
            observed: dict[str, AppStatus] = {}
            for c in self.runtime.list(deadline):
                app = app_name_from_container(c.name)
                if app is None or c.name.lstrip("/") == self.settings.proxy_container:
                    continue
                observed[app] = AppStatus.STOPPED if "exited" in c.status.lower() else AppStatus.RUNNING

            now = utc_now()
            for rec in reg.records():
                actual = observed.get(rec.name, AppStatus.UNKNOWN)
                if rec.status != actual:
                    level = "WARN" if actual == AppStatus.UNKNOWN else "INFO"
                    self.events.log_event(
                        level, f"Status drift: {rec.status.value} -> {actual.value}", app_name=rec.name
                    )
                    rec.status = actual
                    rec.updated_at = now
            reg.save()
            return reg.records()
