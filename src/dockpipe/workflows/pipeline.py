"""Pipeline runner: build, test, conditional, and always-cleanup."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dockpipe.compose.service import ComposeService
from dockpipe.config.models import DockpipeConfig, PipelineDef
from dockpipe.errors import PipelineError, TestExecutionError
from dockpipe.events.emitter import EventEmitter, PipelineEvent
from dockpipe.images.service import ImageService
from dockpipe.workflows.capture import TestResultCapture
from dockpipe.workflows.models import PipelineContext
from dockpipe.workflows.operations import SaveOperation
from dockpipe.workflows.steps.always import AlwaysStepExecutor
from dockpipe.workflows.steps.build import BuildStepExecutor
from dockpipe.workflows.steps.conditional import ConditionalExecutor, select_path
from dockpipe.workflows.steps.failure import FailureStepExecutor
from dockpipe.workflows.steps.success import SuccessStepExecutor
from dockpipe.workflows.steps.test import TestStepExecutor
from dockpipe.workflows.tasks import TaskLookup
from dockpipe.workflows.validation import PipelineValidator

logger = logging.getLogger(__name__)


@dataclass
class PipelineRunResult:
    """Outcome of a pipeline that ran to completion."""

    pipeline_name: str
    context: PipelineContext
    duration_ms: float | None = None

    @property
    def success(self) -> bool:
        result = self.context.test_result
        return result.success if result is not None else True

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "context": self.context.to_dict(),
        }


class PipelineRunner:
    """Runs a configured pipeline against a task lookup and optional services.

    Steps run strictly in order. The always step runs in every case, and a
    pipeline whose test task blew up still walks the failure path before the
    error reaches the caller.
    """

    def __init__(
        self,
        config: DockpipeConfig,
        task_lookup: TaskLookup,
        image_service: ImageService | None = None,
        compose_service: ComposeService | None = None,
        emitter: EventEmitter | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self._config = config
        self._tasks = task_lookup
        self._images = image_service
        self._compose = compose_service
        self._emitter = emitter
        self._base_dir = base_dir
        self._capture = TestResultCapture()

    async def _emit(self, event_type: str, pipeline_name: str, **data: Any) -> None:
        if self._emitter is not None:
            await self._emitter.emit(PipelineEvent(event_type=event_type, pipeline_name=pipeline_name, data=data))

    def _project_name(self, pipeline: PipelineDef) -> str | None:
        if pipeline.test is None or not pipeline.test.stack:
            return None
        stack = self._config.stacks.get(pipeline.test.stack)
        return stack.effective_project_name if stack is not None else None

    async def run(self, pipeline_name: str) -> PipelineRunResult:
        """Run *pipeline_name*.

        Raises ConfigurationError for an unknown or invalid pipeline, and
        PipelineError (chained to the cause) when any step fails fatally.
        Reported test failures are data: they come back in the result.
        """
        validator = PipelineValidator(self._config, self._tasks)
        validator.validate_pipeline(pipeline_name)
        pipeline = self._config.pipelines[pipeline_name]

        start = time.monotonic()
        context = PipelineContext.create(pipeline_name)
        await self._emit("pipeline.started", pipeline_name)

        error: Exception | None = None
        try:
            context = await self._run_steps(pipeline, context)
        except TestExecutionError as exc:
            error = exc
            context = exc.context
        except Exception as exc:
            error = exc
        finally:
            always = AlwaysStepExecutor(self._compose, self._project_name(pipeline))
            await always.execute(pipeline.always, context)

        duration_ms = (time.monotonic() - start) * 1000
        result = PipelineRunResult(pipeline_name=pipeline_name, context=context, duration_ms=duration_ms)
        if error is not None:
            await self._emit("failure.detected", pipeline_name, error=str(error))
        await self._emit(
            "pipeline.completed",
            pipeline_name,
            success=error is None and result.success,
            duration_ms=duration_ms,
            applied_tags=list(context.applied_tags),
            test_result=context.test_result.to_dict() if context.test_result is not None else None,
        )
        if self._emitter is not None:
            await self._emitter.drain()

        if error is not None:
            raise PipelineError(f"Pipeline '{pipeline_name}' failed: {error}") from error
        return result

    async def _run_steps(self, pipeline: PipelineDef, context: PipelineContext) -> PipelineContext:
        if pipeline.build is not None:
            image = self._config.images.get(pipeline.build.image)
            context = await BuildStepExecutor(self._tasks).execute(pipeline.build, image, context)
            await self._emit("step.completed", pipeline.name, step="build", image=pipeline.build.image)

        execution_error: TestExecutionError | None = None
        if pipeline.test is not None:
            executor = TestStepExecutor(self._tasks, self._config.stacks, self._capture)
            try:
                context = await executor.execute(pipeline.test, context)
            except TestExecutionError as exc:
                execution_error = exc
                context = exc.context
            await self._emit(
                "step.completed",
                pipeline.name,
                step="test",
                success=context.test_successful,
                test_result=context.test_result.to_dict() if context.test_result is not None else None,
            )

        if context.test_completed:
            conditional = ConditionalExecutor(
                SuccessStepExecutor(self._images, save_operation=SaveOperation(self._base_dir)),
                FailureStepExecutor(self._images, self._compose, self._project_name(pipeline)),
            )
            path = select_path(context.test_result)
            try:
                context = await conditional.execute(
                    context.test_result,
                    pipeline.success_spec(),
                    pipeline.failure_spec(),
                    context,
                )
            except Exception as exc:
                # the failing test run stays the outcome of the pipeline
                if path != "failure":
                    raise
                logger.warning("Failure step of pipeline '%s' raised: %s", pipeline.name, exc)
            await self._emit(
                "step.completed",
                pipeline.name,
                step="conditional",
                path=path,
                applied_tags=list(context.applied_tags),
            )
        else:
            logger.info("Test step did not complete; skipping conditional step")

        if execution_error is not None:
            execution_error.context = context
            raise execution_error
        return context
