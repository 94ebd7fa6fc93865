"""Image models and the image service."""

from __future__ import annotations

from dockpipe.images.models import AuthConfig, BuildContext, SaveCompression, build_image_references
from dockpipe.images.service import DockerImageService, ImageService

__all__ = [
    "AuthConfig",
    "BuildContext",
    "DockerImageService",
    "ImageService",
    "SaveCompression",
    "build_image_references",
]
