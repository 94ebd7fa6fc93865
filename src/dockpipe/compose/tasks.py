"""composeUp / composeDown tasks for configured stacks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from dockpipe.compose.models import ServiceStatus, StackConfig, WaitConfig
from dockpipe.compose.service import ComposeService
from dockpipe.compose.state import write_state_file
from dockpipe.config.models import StackDef, WaitDef
from dockpipe.errors import PipelineError
from dockpipe.workflows.tasks import TaskRegistry, compose_down_task_name, compose_up_task_name

logger = logging.getLogger(__name__)


def stack_config(stack: StackDef, base_dir: Path | None = None) -> StackConfig:
    """Resolve a configured stack into compose inputs; relative paths hang off *base_dir*."""
    root = base_dir or Path.cwd()
    return StackConfig(
        stack_name=stack.name,
        project_name=stack.effective_project_name,
        compose_files=[root / f for f in stack.compose_files],
        env_files=[root / f for f in stack.env_files],
        environment=dict(stack.environment),
    )


def wait_config(project_name: str, wait: WaitDef, target: ServiceStatus) -> WaitConfig:
    return WaitConfig(
        project_name=project_name,
        services=list(wait.services),
        timeout_seconds=wait.timeout_seconds,
        poll_seconds=wait.poll_seconds,
        target_status=target,
    )


class ComposeUpTask:
    """Starts a stack, waits for readiness and writes the state file."""

    def __init__(
        self,
        stack: StackDef,
        service: ComposeService,
        state_dir: Path,
        base_dir: Path | None = None,
    ) -> None:
        self.name = compose_up_task_name(stack.name)
        self.stack = stack
        self._service = service
        self._state_dir = state_dir
        self._base_dir = base_dir
        self.state_file: Path | None = None

    async def run(self) -> None:
        config = stack_config(self.stack, self._base_dir)
        try:
            state = await self._service.up(config)
            if self.stack.wait_for_healthy is not None:
                await self._service.wait_for_services(
                    wait_config(config.project_name, self.stack.wait_for_healthy, ServiceStatus.HEALTHY)
                )
            if self.stack.wait_for_running is not None:
                await self._service.wait_for_services(
                    wait_config(config.project_name, self.stack.wait_for_running, ServiceStatus.RUNNING)
                )
            self.state_file = write_state_file(state, self._state_dir, lifecycle="class")
        except Exception as exc:
            raise PipelineError(f"Failed to start compose stack '{self.stack.name}': {exc}") from exc
        logger.info("Stack '%s' is up; state written to %s", self.stack.name, self.state_file)


class ComposeDownTask:
    """Stops a stack and removes its containers."""

    def __init__(self, stack: StackDef, service: ComposeService) -> None:
        self.name = compose_down_task_name(stack.name)
        self.stack = stack
        self._service = service

    async def run(self) -> None:
        try:
            await self._service.down(self.stack.effective_project_name)
        except Exception as exc:
            raise PipelineError(f"Failed to stop compose stack '{self.stack.name}': {exc}") from exc


def register_stack_tasks(
    registry: TaskRegistry,
    stacks: Mapping[str, StackDef],
    service: ComposeService,
    state_dir: Path,
    base_dir: Path | None = None,
) -> None:
    """Register composeUp<Stack> and composeDown<Stack> for every stack."""
    for stack in stacks.values():
        registry.register(ComposeUpTask(stack, service, state_dir, base_dir))
        registry.register(ComposeDownTask(stack, service))
