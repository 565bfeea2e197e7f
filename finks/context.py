from __future__ import annotations

from dataclasses import dataclass

from .db import EventLog
from .docker_ops import ContainerRuntime, DockerRuntime
from .runtime import Deadline
from .settings import Settings


@dataclass
class Context:
    """Everything one command invocation shares: settings, runtime adapter, journal.

    Built once per invocation and handed to each component's constructor.
    """

    settings: Settings
    runtime: ContainerRuntime
    events: EventLog

    def control_deadline(self) -> Deadline:
        return Deadline(self.settings.control_timeout_s)

    def deploy_deadline(self) -> Deadline:
        return Deadline(self.settings.deploy_timeout_s)


def build_context(settings: Settings | None = None, runtime: ContainerRuntime | None = None) -> Context:
    settings = settings or Settings.from_env()
    return Context(
        settings=settings,
        runtime=runtime if runtime is not None else DockerRuntime(),
        events=EventLog(settings.events_path, enabled=settings.enable_events),
    )
