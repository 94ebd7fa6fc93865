"""Data models for compose stacks: config, wait/logs settings and runtime state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from dockpipe.errors import ComposeErrorType, ComposeServiceError

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_POLL_SECONDS = 2
DEFAULT_TAIL_LINES = 100


class ServiceStatus(str, Enum):
    """Readiness a wait can target."""

    RUNNING = "running"
    HEALTHY = "healthy"


@dataclass(frozen=True)
class PortMapping:
    container_port: int
    host_port: int
    protocol: str = "tcp"


@dataclass(frozen=True)
class ServiceInfo:
    """Runtime view of one compose service container."""

    container_id: str
    container_name: str
    state: str
    health: str = ""
    published_ports: tuple[PortMapping, ...] = ()

    @property
    def is_running(self) -> bool:
        return self.state.lower() == "running"

    @property
    def is_healthy(self) -> bool:
        return self.health.lower() == "healthy"

    @property
    def status_label(self) -> str:
        return self.health or self.state

    def has_status(self, status: ServiceStatus) -> bool:
        if status is ServiceStatus.HEALTHY:
            return self.is_healthy
        return self.is_running

    def host_port(self, container_port: int) -> int | None:
        for mapping in self.published_ports:
            if mapping.container_port == container_port:
                return mapping.host_port
        return None


@dataclass
class ComposeState:
    """A started stack: its project and the services it runs."""

    stack_name: str
    project_name: str
    services: dict[str, ServiceInfo] = field(default_factory=dict)
    networks: list[str] = field(default_factory=list)


@dataclass
class StackConfig:
    """Resolved inputs for ``docker compose up``."""

    stack_name: str
    project_name: str
    compose_files: list[Path]
    env_files: list[Path] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.compose_files:
            raise ComposeServiceError(
                ComposeErrorType.COMPOSE_FILE_NOT_FOUND,
                f"Stack '{self.stack_name}' has no compose files",
            )
        missing = [str(p) for p in self.compose_files if not p.exists()]
        if missing:
            raise ComposeServiceError(
                ComposeErrorType.COMPOSE_FILE_NOT_FOUND,
                f"Compose file(s) not found for stack '{self.stack_name}': {', '.join(missing)}",
            )


@dataclass
class WaitConfig:
    """Wait until *services* of *project_name* reach *target_status*.

    Non-positive timeout or poll values fall back to the defaults.
    """

    project_name: str
    services: list[str] = field(default_factory=list)
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    poll_seconds: int = DEFAULT_POLL_SECONDS
    target_status: ServiceStatus = ServiceStatus.HEALTHY

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            self.timeout_seconds = DEFAULT_TIMEOUT_SECONDS
        if self.poll_seconds <= 0:
            self.poll_seconds = DEFAULT_POLL_SECONDS

    @property
    def total_wait_attempts(self) -> int:
        return max(1, self.timeout_seconds // self.poll_seconds)


@dataclass
class LogsConfig:
    """Which services to read logs from and how much."""

    services: list[str] = field(default_factory=list)
    tail_lines: int = DEFAULT_TAIL_LINES
    follow: bool = False

    def __post_init__(self) -> None:
        self.tail_lines = max(1, self.tail_lines)

    @property
    def has_specific_services(self) -> bool:
        return bool(self.services)

    def to_dict(self) -> dict[str, Any]:
        return {"services": list(self.services), "tail_lines": self.tail_lines, "follow": self.follow}
