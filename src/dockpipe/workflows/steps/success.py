"""Success path: tag, save and publish the verified image."""

from __future__ import annotations

import logging

from dockpipe.config.models import ImageDef, PublishDef, SaveDef, SuccessStepDef
from dockpipe.errors import PipelineError
from dockpipe.images.service import ImageService
from dockpipe.workflows.models import PipelineContext
from dockpipe.workflows.operations import PublishOperation, SaveOperation, TagOperation

logger = logging.getLogger(__name__)


class SuccessStepExecutor:
    """Runs the success step in fixed order: tags, save, publish, hook.

    Every operation requires a built image; a missing one is fatal.
    """

    def __init__(
        self,
        image_service: ImageService | None = None,
        tag_operation: TagOperation | None = None,
        save_operation: SaveOperation | None = None,
        publish_operation: PublishOperation | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._images = image_service
        self._tag = tag_operation or TagOperation()
        self._save = save_operation or SaveOperation()
        self._publish = publish_operation or PublishOperation()
        self._logger = log or logger

    async def execute(self, spec: SuccessStepDef | None, context: PipelineContext) -> PipelineContext:
        if spec is None:
            self._logger.info("No success step configured")
            return context

        if spec.additional_tags:
            context = await self.apply_tags(spec.additional_tags, context)
        if spec.save is not None:
            await self.save_image(spec.save, context)
        if spec.publish is not None:
            await self.publish_image(spec.publish, context)
        if spec.after_success is not None:
            spec.after_success()
        return context

    def _require_image(self, context: PipelineContext, action: str) -> ImageDef:
        if context.built_image is None:
            raise PipelineError(f"Cannot {action} - no built image in context")
        return context.built_image

    async def apply_tags(self, tags: list[str], context: PipelineContext) -> PipelineContext:
        image = self._require_image(context, "apply tags")
        if self._images is None:
            self._logger.warning("No image service available; tags %s recorded in context only", tags)
        else:
            await self._tag.execute(image, tags, self._images)
        return context.with_applied_tags(tags)

    async def save_image(self, save: SaveDef, context: PipelineContext) -> None:
        image = self._require_image(context, "save image")
        if self._images is None:
            self._logger.warning("No image service available; skipping save of '%s'", image.name)
            return
        await self._save.execute(save, image, self._images)

    async def publish_image(self, publish: PublishDef, context: PipelineContext) -> None:
        image = self._require_image(context, "publish image")
        if self._images is None:
            self._logger.warning("No image service available; skipping publish of '%s'", image.name)
            return
        await self._publish.execute(publish, image, self._images)
