"""Test step: compose up, run the test task, compose down.

With the CLASS lifecycle the step brings the stack up once around the whole
test task and always tears it down again. With the METHOD lifecycle (or an
explicit delegation flag) compose management is left to the test framework;
for METHOD the stack settings are handed to the test task instead.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from dockpipe.config.models import StackDef, TestStepDef, WaitDef
from dockpipe.errors import ConfigurationError, TaskNotFoundError, TestExecutionError
from dockpipe.workflows.capture import TestResultCapture
from dockpipe.workflows.models import Lifecycle, PipelineContext
from dockpipe.workflows.tasks import (
    ConfigurableTask,
    TaskHandle,
    TaskLookup,
    compose_down_task_name,
    compose_up_task_name,
)

logger = logging.getLogger(__name__)


def should_delegate_compose(spec: TestStepDef) -> bool:
    """METHOD lifecycle always delegates, whatever the explicit flag says."""
    return spec.lifecycle is Lifecycle.METHOD or spec.delegate_stack_management


def _wait_settings(prefix: str, wait: WaitDef | None) -> dict[str, str]:
    if wait is None:
        return {}
    return {
        f"{prefix}.services": ",".join(wait.services),
        f"{prefix}.timeoutSeconds": str(wait.timeout_seconds),
        f"{prefix}.pollSeconds": str(wait.poll_seconds),
    }


def method_lifecycle_settings(stack: StackDef) -> dict[str, str]:
    """Settings a per-method compose extension reads to manage the stack itself."""
    settings = {
        "docker.compose.lifecycle": Lifecycle.METHOD.value,
        "docker.compose.stack": stack.name,
        "docker.compose.files": ",".join(stack.compose_files),
        "docker.compose.projectName": stack.effective_project_name,
    }
    settings.update(_wait_settings("docker.compose.waitForHealthy", stack.wait_for_healthy))
    settings.update(_wait_settings("docker.compose.waitForRunning", stack.wait_for_running))
    return settings


class TestStepExecutor:
    """Runs one test step and returns the context carrying its TestResult."""

    __test__ = False

    def __init__(
        self,
        task_lookup: TaskLookup,
        stacks: Mapping[str, StackDef],
        capture: TestResultCapture | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._tasks = task_lookup
        self._stacks = stacks
        self._logger = log or logger
        self._capture = capture or TestResultCapture(self._logger)

    def validate(self, spec: TestStepDef) -> StackDef | None:
        """Check the step before anything runs; returns the referenced stack."""
        if not spec.test_task:
            raise ConfigurationError("Test step requires a test task name")
        if spec.lifecycle is Lifecycle.METHOD and not spec.stack:
            raise ConfigurationError(
                "lifecycle=METHOD but no stack is configured. Method lifecycle requires a stack"
            )
        if not should_delegate_compose(spec) and not spec.stack:
            raise ConfigurationError(
                f"Test step for task '{spec.test_task}' requires a stack unless stack management is delegated"
            )
        if not spec.stack:
            return None
        stack = self._stacks.get(spec.stack)
        if stack is None:
            available = ", ".join(sorted(self._stacks)) or "none"
            raise ConfigurationError(f"Stack '{spec.stack}' not found. Available stacks: {available}")
        return stack

    async def execute(self, spec: TestStepDef, context: PipelineContext) -> PipelineContext:
        stack = self.validate(spec)
        assert spec.test_task is not None
        delegate = should_delegate_compose(spec)

        test_task = self._tasks.find_by_name(spec.test_task)
        if test_task is None:
            raise TaskNotFoundError(spec.test_task)

        if spec.lifecycle is Lifecycle.METHOD:
            assert stack is not None
            self._configure_method_lifecycle(test_task, stack)

        if spec.before_test is not None:
            spec.before_test()

        if delegate:
            self._logger.info(
                "Compose management for task '%s' is delegated (lifecycle=%s); skipping composeUp",
                spec.test_task,
                spec.lifecycle.value,
            )
        else:
            assert stack is not None
            await self._compose_up(stack)

        error: Exception | None = None
        try:
            try:
                await self._tasks.execute(test_task)
            except Exception as exc:
                error = exc
                result = self._capture.capture_failure(test_task, exc)
            else:
                result = self._capture.capture_from_task(test_task)
        finally:
            if not delegate:
                assert stack is not None
                await self._compose_down(stack)

        if spec.after_test is not None:
            spec.after_test(result)

        updated = context.with_test_result(result)
        if error is not None:
            raise TestExecutionError(str(error), test_result=result, context=updated, cause=error) from error
        self._logger.info("Test step finished: %s", result)
        return updated

    def _configure_method_lifecycle(self, task: TaskHandle, stack: StackDef) -> None:
        settings = method_lifecycle_settings(stack)
        if isinstance(task, ConfigurableTask):
            task.apply_settings(settings)
            self._logger.info("Handed stack '%s' settings to task '%s' for per-method lifecycle", stack.name, task.name)
        else:
            self._logger.warning(
                "Task '%s' does not accept settings; per-method stack '%s' cannot be configured",
                task.name,
                stack.name,
            )

    async def _compose_up(self, stack: StackDef) -> None:
        task_name = compose_up_task_name(stack.name)
        task = self._tasks.find_by_name(task_name)
        if task is None:
            raise ConfigurationError(
                f"ComposeUp task '{task_name}' not found. Ensure the stack '{stack.name}' is configured"
            )
        await self._tasks.execute(task)

    async def _compose_down(self, stack: StackDef) -> None:
        task_name = compose_down_task_name(stack.name)
        task = self._tasks.find_by_name(task_name)
        if task is None:
            self._logger.warning("ComposeDown task '%s' not found, skipping cleanup", task_name)
            return
        try:
            await self._tasks.execute(task)
        except Exception as exc:
            self._logger.warning("Failed to stop stack '%s': %s", stack.name, exc)