"""dockerBuild tasks for configured images."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from dockpipe.config.models import ImageDef
from dockpipe.images.models import BuildContext
from dockpipe.images.service import ImageService
from dockpipe.workflows.tasks import TaskRegistry, build_task_name

logger = logging.getLogger(__name__)


class ImageBuildTask:
    """Builds one configured image under all of its references."""

    def __init__(self, image: ImageDef, service: ImageService, base_dir: Path | None = None) -> None:
        self.name = build_task_name(image.name)
        self.image = image
        self._service = service
        self._base_dir = base_dir or Path.cwd()
        self.image_id: str | None = None

    def build_context(self) -> BuildContext:
        return BuildContext(
            context_dir=self._base_dir / self.image.context,
            dockerfile=self.image.dockerfile,
            tags=self.image.references(),
            build_args=dict(self.image.build_args),
            labels=dict(self.image.labels),
        )

    async def run(self) -> None:
        self.image_id = await self._service.build_image(self.build_context())
        logger.info("Image '%s' built: %s", self.image.name, self.image_id)


def register_image_tasks(
    registry: TaskRegistry,
    images: Mapping[str, ImageDef],
    service: ImageService,
    base_dir: Path | None = None,
) -> None:
    """Register dockerBuild<Image> for every configured image."""
    for image in images.values():
        registry.register(ImageBuildTask(image, service, base_dir))
