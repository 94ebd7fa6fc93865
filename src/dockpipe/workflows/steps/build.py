"""Build step: run the image's dockerBuild task."""

from __future__ import annotations

import logging

from dockpipe.config.models import BuildStepDef, ImageDef
from dockpipe.errors import ConfigurationError, PipelineError
from dockpipe.workflows.models import PipelineContext
from dockpipe.workflows.tasks import TaskLookup, build_task_name

logger = logging.getLogger(__name__)


class BuildStepExecutor:
    """Builds the pipeline image and records it in the context."""

    def __init__(self, task_lookup: TaskLookup, log: logging.Logger | None = None) -> None:
        self._tasks = task_lookup
        self._logger = log or logger

    async def execute(self, spec: BuildStepDef, image: ImageDef | None, context: PipelineContext) -> PipelineContext:
        if image is None:
            raise ConfigurationError(f"Build step references unknown image '{spec.image}'")

        if spec.before_build is not None:
            spec.before_build()

        task_name = build_task_name(image.name)
        task = self._tasks.find_by_name(task_name)
        if task is None:
            raise ConfigurationError(f"Build task '{task_name}' not found. Ensure the image '{image.name}' is configured")
        try:
            await self._tasks.execute(task)
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(f"Build of image '{image.name}' failed: {exc}") from exc

        if spec.after_build is not None:
            spec.after_build()

        self._logger.info("Built image '%s'", image.name)
        return context.with_built_image(image)
