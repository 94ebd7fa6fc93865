"""Shared fixtures for dockpipe tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict
from unittest.mock import AsyncMock

import pytest
import yaml

from dockpipe.compose.models import ComposeState, ServiceStatus
from dockpipe.config.models import DockpipeConfig
from dockpipe.workflows.tasks import FunctionTask, TaskHandle, TaskOutcome, TaskRegistry


SAMPLE_CONFIG: Dict[str, Any] = {
    "project": {"name": "webapp", "version": "1.2.0"},
    "images": {
        "webApp": {
            "context": ".",
            "dockerfile": "Dockerfile",
            "registry": "registry.example.com",
            "namespace": "acme",
            "image_name": "web-app",
            "tags": ["1.2.0"],
        },
    },
    "stacks": {
        "webStack": {
            "compose_files": ["compose.yml"],
            "project_name": "webapp-it",
            "wait_for_healthy": {"services": ["web"], "timeout_seconds": 30, "poll_seconds": 1},
        },
    },
    "tasks": {
        "integrationTest": {"command": "pytest tests/integration", "reports_dir": "build/test-results"},
    },
    "pipelines": {
        "ci": {
            "description": "Build, test and ship",
            "build": {"image": "webApp"},
            "test": {"stack": "webStack", "test_task": "integrationTest", "lifecycle": "class"},
            "on_test_success": {"additional_tags": ["tested"]},
            "on_test_failure": {"additional_tags": ["failed"]},
            "always": {"remove_test_containers": True},
        },
    },
}


def recorder(name: str, calls: list[str], outcome: TaskOutcome | None = None, error: Exception | None = None) -> FunctionTask:
    """A FunctionTask that appends its name to *calls* when run."""

    def _action() -> TaskOutcome | None:
        calls.append(name)
        if error is not None:
            raise error
        return outcome

    return FunctionTask(name, _action)


class RecordingLookup(TaskRegistry):
    """TaskRegistry that also records every lookup."""

    def __init__(self) -> None:
        super().__init__()
        self.lookups: list[str] = []

    def find_by_name(self, name: str) -> TaskHandle | None:
        self.lookups.append(name)
        return super().find_by_name(name)


@pytest.fixture()
def sample_config() -> DockpipeConfig:
    """Return a parsed DockpipeConfig from sample data."""
    return DockpipeConfig(**SAMPLE_CONFIG)


@pytest.fixture()
def sample_config_dict() -> Dict[str, Any]:
    return dict(SAMPLE_CONFIG)


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    """Write sample config to a temp .dockpipe.yaml and return the path."""
    path = tmp_path / ".dockpipe.yaml"
    with path.open("w") as fh:
        yaml.dump(SAMPLE_CONFIG, fh)
    return path


@pytest.fixture()
def image_service() -> AsyncMock:
    service = AsyncMock()
    service.build_image.return_value = "sha256:abc123"
    return service


@pytest.fixture()
def compose_service() -> AsyncMock:
    service = AsyncMock()
    service.up.return_value = ComposeState(stack_name="webStack", project_name="webapp-it")
    service.wait_for_services.return_value = ServiceStatus.HEALTHY
    service.capture_logs.return_value = "web-1  | boom\n"
    return service
