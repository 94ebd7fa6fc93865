"""Cross-reference checks for pipeline definitions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from dockpipe.config.models import DockpipeConfig, PipelineDef
from dockpipe.errors import ConfigurationError
from dockpipe.workflows.models import Lifecycle
from dockpipe.workflows.tasks import TaskLookup

logger = logging.getLogger(__name__)


def _available(names: Iterable[str]) -> str:
    listed = sorted(names)
    return ", ".join(listed) if listed else "none"


class PipelineValidator:
    """Checks image, stack and task references before a pipeline runs."""

    def __init__(self, config: DockpipeConfig, task_lookup: TaskLookup | None = None) -> None:
        self._config = config
        self._tasks = task_lookup

    def validate(self, pipeline: PipelineDef) -> list[str]:
        """Return every problem found in *pipeline*; warnings are only logged."""
        errors: list[str] = []
        prefix = f"Pipeline '{pipeline.name}'"

        if pipeline.build is not None and pipeline.build.image not in self._config.images:
            errors.append(
                f"{prefix}: build image '{pipeline.build.image}' not found. "
                f"Available images: {_available(self._config.images)}. "
                "Define it under 'images' or fix the name"
            )

        test = pipeline.test
        if test is not None:
            delegated = test.lifecycle is Lifecycle.METHOD or test.delegate_stack_management
            if test.lifecycle is Lifecycle.METHOD and not test.stack:
                errors.append(f"{prefix}: lifecycle=METHOD but no stack is configured. Method lifecycle requires a stack")
            elif not delegated and not test.stack:
                errors.append(f"{prefix}: test step requires a stack unless stack management is delegated")
            if test.stack:
                if test.stack not in self._config.stacks:
                    errors.append(
                        f"{prefix}: stack '{test.stack}' not found. Available stacks: {_available(self._config.stacks)}"
                    )
                elif test.delegate_stack_management and test.lifecycle is Lifecycle.CLASS:
                    logger.warning(
                        "%s: delegate_stack_management is set, stack '%s' will not be started by the pipeline",
                        prefix,
                        test.stack,
                    )
            if not test.test_task:
                errors.append(f"{prefix}: test step requires a test task")
            elif self._tasks is not None and self._tasks.find_by_name(test.test_task) is None:
                errors.append(f"{prefix}: test task '{test.test_task}' not found")

        return errors

    def validate_pipeline(self, name: str) -> None:
        pipeline = self._config.pipelines.get(name)
        if pipeline is None:
            raise ConfigurationError(
                f"Unknown pipeline: {name}. Available pipelines: {_available(self._config.pipelines)}"
            )
        self._raise_for(self.validate(pipeline))

    def validate_all(self) -> None:
        errors: list[str] = []
        for pipeline in self._config.pipelines.values():
            errors.extend(self.validate(pipeline))
        self._raise_for(errors)

    @staticmethod
    def _raise_for(errors: list[str]) -> None:
        if errors:
            raise ConfigurationError("Pipeline validation failed:\n  - " + "\n  - ".join(errors))
