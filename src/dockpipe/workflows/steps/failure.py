"""Failure path: tag the image and capture stack logs, best effort."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from dockpipe.compose.models import LogsConfig
from dockpipe.compose.service import ComposeService
from dockpipe.config.models import FailureStepDef
from dockpipe.errors import PipelineError
from dockpipe.images.service import ImageService
from dockpipe.workflows.models import PipelineContext
from dockpipe.workflows.operations import TagOperation

logger = logging.getLogger(__name__)

FAILURE_LOG_TAIL_LINES = 1000


class FailureStepExecutor:
    """Runs the failure step in fixed order: tags, log capture, hook.

    Diagnostics here must never turn into a second failure: a missing image
    only warns, and tagging or log capture errors are logged and dropped.
    """

    def __init__(
        self,
        image_service: ImageService | None = None,
        compose_service: ComposeService | None = None,
        project_name: str | None = None,
        tag_operation: TagOperation | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._images = image_service
        self._compose = compose_service
        self._project_name = project_name
        self._tag = tag_operation or TagOperation()
        self._logger = log or logger

    async def execute(self, spec: FailureStepDef | None, context: PipelineContext) -> PipelineContext:
        if spec is None:
            self._logger.info("No failure step configured")
            return context

        if spec.additional_tags:
            context = await self.apply_tags(spec.additional_tags, context)
        if spec.save_failure_logs_dir:
            await self.save_failure_logs(Path(spec.save_failure_logs_dir), spec.include_services)
        if spec.after_failure is not None:
            spec.after_failure()
        return context

    async def apply_tags(self, tags: list[str], context: PipelineContext) -> PipelineContext:
        image = context.built_image
        if image is None:
            self._logger.warning("Cannot apply failure tags %s - no built image in context", tags)
            return context
        if self._images is None:
            self._logger.warning("No image service available; failure tags %s recorded in context only", tags)
        else:
            try:
                await self._tag.execute(image, tags, self._images)
            except PipelineError as exc:
                self._logger.warning("Failure tags %s not applied: %s", tags, exc)
                return context
        return context.with_applied_tags(tags)

    async def save_failure_logs(self, logs_dir: Path, services: list[str]) -> Path | None:
        if self._compose is None or not self._project_name:
            self._logger.warning("Cannot capture failure logs - no compose service or project name available")
            return None
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            config = LogsConfig(services=list(services), tail_lines=FAILURE_LOG_TAIL_LINES)
            text = await self._compose.capture_logs(self._project_name, config)
            log_file = logs_dir / f"failure-logs-{int(time.time() * 1000)}.log"
            log_file.write_text(text, encoding="utf-8")
        except Exception:
            self._logger.exception("Failed to capture failure logs for project %s", self._project_name)
            return None
        self._logger.info("Failure logs saved to %s", log_file)
        return log_file
