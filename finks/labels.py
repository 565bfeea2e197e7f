"""Traefik label generation.

Routing intent (domain, port, TLS mode) becomes the docker labels Traefik's
docker provider reads. Everything here is pure: the same intent always yields
the same, key-sorted label map, so tests compare against literal dicts.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import ValidationFailure
from .models import ENTRYPOINT_WEB, ENTRYPOINT_WEBSECURE, AppRecord, ProxyConfig, TLSMode


CERT_RESOLVER = "letsencrypt"
REDIRECT_MIDDLEWARE = "https-redirect"
REDIRECT_SUFFIX = "-redirect"
DEFAULT_NETWORK = "finks-network"

_INVALID_CHARS_RE = re.compile(r"[^a-z0-9\-]")


def sanitize_name(name: str) -> str:
    """Router/service identifier for an app name: lowercase, ``[a-z0-9-]`` only."""
    s = name.lower().replace("_", "-").replace(" ", "-")
    return _INVALID_CHARS_RE.sub("", s)


def validate_domain(domain: str | None) -> None:
    if not domain:
        raise ValidationFailure("domain cannot be empty")
    if any(ch.isspace() for ch in domain):
        raise ValidationFailure("domain cannot contain spaces")
    if domain.startswith(".") or domain.endswith("."):
        raise ValidationFailure("domain cannot start or end with a dot")
    if len(domain) > 253:
        raise ValidationFailure("domain is too long (max 253 characters)")


def validate_port(port: str | None) -> None:
    if not port:
        raise ValidationFailure("port cannot be empty")
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise ValidationFailure(f"invalid port: {port!r}")


def validate_health_path(path: str) -> None:
    if not path.startswith("/"):
        raise ValidationFailure("health_path must start with '/'.")
    if "://" in path or any(ch.isspace() for ch in path):
        raise ValidationFailure("health_path must be a simple absolute path.")


@dataclass(frozen=True)
class RoutingIntent:
    app_name: str
    domain: str
    port: str | None = None
    network: str = DEFAULT_NETWORK
    tls_mode: TLSMode = TLSMode.LOCAL
    health_path: str | None = None

    @property
    def identifier(self) -> str:
        return sanitize_name(self.app_name)


def routing_intent(record: AppRecord, proxy: ProxyConfig, network: str, port: str | None) -> RoutingIntent | None:
    """Intent for a registered app under the current proxy config; None if the app is not routed."""
    if not record.domain:
        return None
    return RoutingIntent(
        app_name=record.name,
        domain=record.domain,
        port=port,
        network=network,
        tls_mode=proxy.tls_mode,
        health_path=record.health_path,
    )


@dataclass
class _Router:
    rule: str
    entrypoints: str
    service: str | None = None
    tls: bool = False
    cert_resolver: str | None = None
    middlewares: list[str] = field(default_factory=list)


@dataclass
class _Service:
    port: str | None = None
    health_path: str | None = None


class LabelBuilder:
    """Typed model of a Traefik label set; strings are produced only by ``build``."""

    def __init__(self) -> None:
        self._enabled = False
        self._network: str | None = None
        self._routers: dict[str, _Router] = {}
        self._services: dict[str, _Service] = {}
        self._redirect_scheme: dict[str, str] = {}

    def enable(self, network: str) -> "LabelBuilder":
        self._enabled = True
        self._network = network
        return self

    def route(self, router: str, domain: str, service: str, entrypoint: str) -> "LabelBuilder":
        self._routers[router] = _Router(rule=f"Host(`{domain}`)", entrypoints=entrypoint, service=service)
        self._services.setdefault(service, _Service())
        return self

    def bind_port(self, service: str, port: str) -> "LabelBuilder":
        self._services.setdefault(service, _Service()).port = port
        return self

    def health_check(self, service: str, path: str) -> "LabelBuilder":
        self._services.setdefault(service, _Service()).health_path = path
        return self

    def enable_tls(self, router: str, resolver: str = CERT_RESOLVER) -> "LabelBuilder":
        r = self._routers[router]
        r.entrypoints = ENTRYPOINT_WEBSECURE
        r.tls = True
        r.cert_resolver = resolver
        return self

    def add_redirect(self, router: str, domain: str) -> "LabelBuilder":
        self._routers[router + REDIRECT_SUFFIX] = _Router(
            rule=f"Host(`{domain}`)",
            entrypoints=ENTRYPOINT_WEB,
            middlewares=[REDIRECT_MIDDLEWARE],
        )
        # Shared by every managed app; re-emitting the same pair is harmless.
        self._redirect_scheme = {"scheme": "https", "permanent": "true"}
        return self

    def build(self) -> dict[str, str]:
        labels: dict[str, str] = {}
        if self._enabled:
            labels["traefik.enable"] = "true"
            if self._network:
                labels["traefik.docker.network"] = self._network

        for name, r in self._routers.items():
            prefix = f"traefik.http.routers.{name}"
            labels[f"{prefix}.rule"] = r.rule
            labels[f"{prefix}.entrypoints"] = r.entrypoints
            if r.service:
                labels[f"{prefix}.service"] = r.service
            if r.tls:
                labels[f"{prefix}.tls"] = "true"
                if r.cert_resolver:
                    labels[f"{prefix}.tls.certresolver"] = r.cert_resolver
            if r.middlewares:
                labels[f"{prefix}.middlewares"] = ",".join(r.middlewares)

        for name, s in self._services.items():
            prefix = f"traefik.http.services.{name}.loadbalancer"
            if s.port:
                labels[f"{prefix}.server.port"] = s.port
            if s.health_path:
                labels[f"{prefix}.healthcheck.path"] = s.health_path

        for key, value in self._redirect_scheme.items():
            labels[f"traefik.http.middlewares.{REDIRECT_MIDDLEWARE}.redirectscheme.{key}"] = value

        return dict(sorted(labels.items()))


def generate_labels(intent: RoutingIntent) -> dict[str, str]:
    ident = intent.identifier
    b = LabelBuilder().enable(intent.network)
    b.route(ident, intent.domain, service=ident, entrypoint=ENTRYPOINT_WEB)
    if intent.port:
        b.bind_port(ident, intent.port)
    if intent.health_path:
        b.health_check(ident, intent.health_path)
    if intent.tls_mode == TLSMode.MANAGED:
        b.enable_tls(ident)
        b.add_redirect(ident, intent.domain)
    return b.build()
