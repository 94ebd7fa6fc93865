"""Named tasks and the lookup the pipeline resolves them through."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from dockpipe.errors import TaskExecutionError, TaskNotFoundError

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def capitalize(name: str) -> str:
    """Upper-case the first character only: ``webApp`` -> ``WebApp``."""
    return name[:1].upper() + name[1:]


def compose_up_task_name(stack_name: str) -> str:
    return f"composeUp{capitalize(stack_name)}"


def compose_down_task_name(stack_name: str) -> str:
    return f"composeDown{capitalize(stack_name)}"


def build_task_name(image_name: str) -> str:
    return f"dockerBuild{capitalize(image_name)}"


def settings_to_env(settings: Mapping[str, str]) -> dict[str, str]:
    """Map dotted camelCase keys to environment variable names.

    ``docker.compose.waitForHealthy.services`` becomes
    ``DOCKER_COMPOSE_WAIT_FOR_HEALTHY_SERVICES``.
    """
    env: dict[str, str] = {}
    for key, value in settings.items():
        parts = [_CAMEL_BOUNDARY.sub("_", part).upper() for part in key.split(".")]
        env["_".join(parts)] = value
    return env


@dataclass(frozen=True)
class TaskOutcome:
    """Post-execution state a task can report about the tests it ran."""

    executed: int = 0
    failed: int = 0
    skipped: int = 0
    up_to_date: int = 0

    @property
    def total(self) -> int:
        return self.executed + self.failed + self.skipped + self.up_to_date


@runtime_checkable
class TaskHandle(Protocol):
    """Something runnable by name. Raises only on framework-level failure."""

    name: str

    async def run(self) -> None: ...


@runtime_checkable
class ConfigurableTask(Protocol):
    """A task that accepts structured settings for its execution environment."""

    def apply_settings(self, settings: Mapping[str, str]) -> None: ...


class TaskLookup(Protocol):
    """Resolves tasks by name and executes them."""

    def find_by_name(self, name: str) -> TaskHandle | None: ...

    async def execute(self, task: TaskHandle) -> None: ...


class TaskRegistry:
    """Dict-backed TaskLookup."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskHandle] = {}

    def register(self, task: TaskHandle) -> TaskHandle:
        if task.name in self._tasks:
            logger.debug("Replacing task %s", task.name)
        self._tasks[task.name] = task
        return task

    def find_by_name(self, name: str) -> TaskHandle | None:
        return self._tasks.get(name)

    def names(self) -> list[str]:
        return sorted(self._tasks)

    async def execute(self, task: TaskHandle) -> None:
        logger.info("> Task :%s", task.name)
        await task.run()

    async def execute_by_name(self, name: str) -> None:
        task = self.find_by_name(name)
        if task is None:
            raise TaskNotFoundError(name)
        await self.execute(task)


class FunctionTask:
    """Wraps a sync or async callable as a task.

    If the callable returns a ``TaskOutcome`` it is kept as the task's outcome.
    """

    def __init__(self, name: str, action: Callable[[], Any]) -> None:
        self.name = name
        self._action = action
        self.outcome: TaskOutcome | None = None

    async def run(self) -> None:
        result = self._action()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, TaskOutcome):
            self.outcome = result


class CommandTestTask:
    """Runs a shell command as a test task.

    Settings pushed in with ``apply_settings`` are exported to the command's
    environment. A non-zero exit is treated as reported test failures when the
    JUnit reports record failures, and as a framework failure otherwise.
    """

    __test__ = False

    def __init__(
        self,
        name: str,
        command: str,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        reports_dir: Path | None = None,
    ) -> None:
        self.name = name
        self.command = command
        self.cwd = cwd
        self.env = dict(env or {})
        self.reports_dir = reports_dir
        self.settings: dict[str, str] = {}
        self.outcome: TaskOutcome | None = None
        self.returncode: int | None = None

    def apply_settings(self, settings: Mapping[str, str]) -> None:
        self.settings.update(settings)

    def environment(self) -> dict[str, str]:
        return {**os.environ, **self.env, **settings_to_env(self.settings)}

    async def run(self) -> None:
        from dockpipe.workflows.capture import read_junit_reports

        if self.reports_dir is not None and self.reports_dir.is_dir():
            for stale in self.reports_dir.glob("*.xml"):
                stale.unlink()
        logger.info("Running test command: %s", self.command)
        try:
            proc = await asyncio.create_subprocess_shell(
                self.command,
                cwd=str(self.cwd) if self.cwd else None,
                env=self.environment(),
            )
        except OSError as exc:
            raise TaskExecutionError(self.name, str(exc)) from exc
        self.returncode = await proc.wait()
        if self.returncode == 0:
            return

        if self.reports_dir is None:
            # no reports configured: the exit code is all we have
            self.outcome = TaskOutcome(failed=1)
            logger.info("Test command exited with %d", self.returncode)
            return
        reported = read_junit_reports(self.reports_dir)
        if reported is not None and reported.failure_count > 0:
            logger.info("Test command exited with %d: %d test failure(s) reported", self.returncode, reported.failure_count)
            return
        raise TaskExecutionError(self.name, f"command exited with status {self.returncode} without reporting test failures")
