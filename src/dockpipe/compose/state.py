"""Stack state file written after compose-up.

Test code reads this file to discover container names and dynamically
assigned host ports, so its field names are a fixed contract::

    {
      "stackName": "...", "projectName": "...", "lifecycle": "class",
      "timestamp": "2024-01-01T12:00:00.000Z",
      "services": {
        "<service>": {
          "containerId": "...", "containerName": "...", "state": "...",
          "publishedPorts": [{"container": 8080, "host": 32768, "protocol": "tcp"}]
        }
      }
    }
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dockpipe.compose.models import ComposeState, PortMapping, ServiceInfo


def state_file_path(state_dir: Path, stack_name: str) -> Path:
    return state_dir / f"{stack_name}-state.json"


def _timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def state_to_dict(state: ComposeState, lifecycle: str = "class") -> dict[str, Any]:
    services: dict[str, Any] = {}
    for name, info in state.services.items():
        services[name] = {
            "containerId": info.container_id,
            "containerName": info.container_name or f"{name}-{state.project_name}-1",
            "state": info.status_label,
            "publishedPorts": [
                {
                    "container": port.container_port,
                    "host": port.host_port,
                    "protocol": port.protocol or "tcp",
                }
                for port in info.published_ports
            ],
        }
    return {
        "stackName": state.stack_name,
        "projectName": state.project_name,
        "lifecycle": lifecycle,
        "timestamp": _timestamp(),
        "services": services,
    }


def write_state_file(state: ComposeState, state_dir: Path, lifecycle: str = "class") -> Path:
    """Write the state file for *state* under *state_dir* and return its path."""
    state_dir.mkdir(parents=True, exist_ok=True)
    path = state_file_path(state_dir, state.stack_name)
    path.write_text(json.dumps(state_to_dict(state, lifecycle), indent=2) + "\n", encoding="utf-8")
    return path


def read_state_file(path: Path) -> ComposeState:
    data = json.loads(path.read_text(encoding="utf-8"))
    services: dict[str, ServiceInfo] = {}
    for name, entry in (data.get("services") or {}).items():
        ports = tuple(
            PortMapping(
                container_port=int(p["container"]),
                host_port=int(p["host"]),
                protocol=p.get("protocol") or "tcp",
            )
            for p in entry.get("publishedPorts", [])
        )
        services[name] = ServiceInfo(
            container_id=entry.get("containerId", ""),
            container_name=entry.get("containerName", ""),
            state=entry.get("state", ""),
            published_ports=ports,
        )
    return ComposeState(
        stack_name=data.get("stackName", ""),
        project_name=data.get("projectName", ""),
        services=services,
    )
