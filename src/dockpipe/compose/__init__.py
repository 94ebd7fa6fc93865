"""Compose stack models, service and state file."""

from __future__ import annotations

from dockpipe.compose.models import (
    ComposeState,
    LogsConfig,
    PortMapping,
    ServiceInfo,
    ServiceStatus,
    StackConfig,
    WaitConfig,
)
from dockpipe.compose.service import ComposeService, DockerComposeCli
from dockpipe.compose.state import read_state_file, write_state_file

__all__ = [
    "ComposeService",
    "ComposeState",
    "DockerComposeCli",
    "LogsConfig",
    "PortMapping",
    "ServiceInfo",
    "ServiceStatus",
    "StackConfig",
    "WaitConfig",
    "read_state_file",
    "write_state_file",
]
