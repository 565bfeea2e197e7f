from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from .runtime import utc_now


class AppStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    UNKNOWN = "unknown"


class TLSMode(str, Enum):
    LOCAL = "local"
    MANAGED = "managed"


ENTRYPOINT_WEB = "web"
ENTRYPOINT_WEBSECURE = "websecure"
ENTRYPOINT_TRAEFIK = "traefik"

DEFAULT_ENTRYPOINTS = {
    ENTRYPOINT_WEB: ":80",
    ENTRYPOINT_WEBSECURE: ":443",
    ENTRYPOINT_TRAEFIK: ":8080",
}


class AppRecord(BaseModel):
    name: str = Field(..., description="Application name; the container is named finks-<name>")
    image: str = Field(..., description="Docker image (name:tag)")
    port: str | None = Field(None, description="Port mapping, e.g. 8080:80")
    env_vars: dict[str, str] = Field(default_factory=dict)
    volumes: list[str] = Field(default_factory=list)
    domain: str | None = Field(None, description="Host routed to the app by the proxy")
    health_path: str | None = Field(None, description="Proxy load-balancer health check path")
    status: AppStatus = AppStatus.UNKNOWN
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


class AppRegistryDocument(BaseModel):
    apps: dict[str, AppRecord] = Field(default_factory=dict)
    data_dir: str = ""


class ProxyConfig(BaseModel):
    container_name: str = "finks-traefik"
    image: str = "traefik:v3.0"
    network: str = "finks-traefik"
    email: str | None = None
    tls_mode: TLSMode = TLSMode.LOCAL
    entrypoints: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ENTRYPOINTS))
    status: AppStatus = AppStatus.STOPPED
    created_at: str | None = None
    updated_at: str | None = None
