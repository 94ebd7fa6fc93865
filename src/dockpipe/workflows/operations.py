"""Tag, save and publish operations applied to a built image."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from dockpipe.config.models import ImageDef, PublishDef, PublishTargetDef, SaveDef
from dockpipe.errors import ConfigurationError, PipelineError
from dockpipe.images.models import build_image_references
from dockpipe.images.service import ImageService

logger = logging.getLogger(__name__)


def _source_reference(image: ImageDef) -> str:
    refs = image.references([image.source_tag])
    if not refs:
        raise ConfigurationError(f"Image '{image.name}' has neither a repository nor an image name")
    return refs[0]


class TagOperation:
    """Adds tags to the built image under its own coordinates."""

    async def execute(self, image: ImageDef, tags: Sequence[str], service: ImageService) -> list[str]:
        source = _source_reference(image)
        targets = image.references(list(tags))
        logger.info("Tagging %s with %s", source, ", ".join(tags))
        try:
            await service.tag_image(source, targets)
        except Exception as exc:
            raise PipelineError(f"Failed to apply tags to image '{source}': {exc}") from exc
        return targets


class SaveOperation:
    """Writes the built image to an archive."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir

    async def execute(self, save: SaveDef, image: ImageDef, service: ImageService) -> Path:
        if not save.output_file:
            raise ConfigurationError(f"Save of image '{image.name}' requires an output file")
        source = _source_reference(image)
        output = Path(save.output_file)
        if self._base_dir is not None and not output.is_absolute():
            output = self._base_dir / output
        logger.info("Saving %s to %s (%s)", source, output, save.compression.name)
        try:
            await service.save_image(source, output, save.compression)
        except Exception as exc:
            raise PipelineError(f"Failed to save image '{source}': {exc}") from exc
        return output


class PublishOperation:
    """Tags and pushes the built image to each publish target."""

    def _target_tags(self, publish: PublishDef, target: PublishTargetDef, image: ImageDef) -> list[str]:
        if target.tags:
            return list(target.tags)
        if publish.tags:
            return list(publish.tags)
        logger.warning(
            "No tags configured for publish target '%s'; publishing source tag '%s'",
            target.name or target.registry,
            image.source_tag,
        )
        return [image.source_tag]

    def target_references(self, publish: PublishDef, target: PublishTargetDef, image: ImageDef) -> list[str]:
        repository, image_name = target.repository, target.image_name
        if not repository and not image_name:
            repository, image_name = image.repository, image.image_name
        return build_image_references(
            target.registry,
            target.namespace or image.namespace,
            repository,
            image_name,
            self._target_tags(publish, target, image),
        )

    async def execute(self, publish: PublishDef, image: ImageDef, service: ImageService) -> list[str]:
        source = _source_reference(image)
        published: list[str] = []
        for target in publish.targets:
            auth = target.auth.to_auth_config() if target.auth is not None else None
            try:
                for ref in self.target_references(publish, target, image):
                    if ref != source:
                        await service.tag_image(source, [ref])
                    await service.push_image(ref, auth)
                    published.append(ref)
            except Exception as exc:
                raise PipelineError(
                    f"Failed to publish image '{source}' to target '{target.name or target.registry}': {exc}"
                ) from exc
        logger.info("Published %s", ", ".join(published) or "nothing")
        return published
