"""Image service protocol and the docker-SDK backed implementation.

The docker SDK is synchronous; every call runs in a worker thread so the
pipeline's event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import bz2
import gzip
import logging
import lzma
import zipfile
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

import docker
from docker.errors import APIError, BuildError, DockerException, ImageNotFound
from docker.models.images import Image

from dockpipe.errors import ImageErrorType, ImageServiceError
from dockpipe.images.models import AuthConfig, BuildContext, SaveCompression, split_image_reference

logger = logging.getLogger(__name__)


@runtime_checkable
class ImageService(Protocol):
    """Operations the pipeline needs from an image backend."""

    async def build_image(self, context: BuildContext) -> str: ...

    async def tag_image(self, source_ref: str, target_refs: list[str]) -> None: ...

    async def save_image(self, ref: str, output_path: Path, compression: SaveCompression) -> None: ...

    async def push_image(self, ref: str, auth: AuthConfig | None = None) -> None: ...


def _write_archive(chunks: Iterator[bytes], output_path: Path, compression: SaveCompression) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if compression is SaveCompression.ZIP:
        entry = output_path.name.removesuffix(".zip") + ".tar"
        with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            with zf.open(entry, "w") as fh:
                for chunk in chunks:
                    fh.write(chunk)
        return
    fh: IO[bytes]
    if compression is SaveCompression.GZIP:
        fh = gzip.open(output_path, "wb")
    elif compression is SaveCompression.BZIP2:
        fh = bz2.open(output_path, "wb")
    elif compression is SaveCompression.XZ:
        fh = lzma.open(output_path, "wb")
    else:
        fh = output_path.open("wb")
    with fh:
        for chunk in chunks:
            fh.write(chunk)


class DockerImageService:
    """ImageService backed by the Docker Engine via the docker SDK."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
                self._client.ping()
            except DockerException as exc:
                raise ImageServiceError(
                    ImageErrorType.DAEMON_UNAVAILABLE,
                    f"Cannot connect to the Docker daemon: {exc}",
                ) from exc
            logger.info("Connected to Docker daemon")
        return self._client

    def _get_image(self, ref: str) -> Image:
        try:
            return self._get_client().images.get(ref)
        except ImageNotFound as exc:
            raise ImageServiceError(ImageErrorType.IMAGE_NOT_FOUND, f"Image '{ref}' not found") from exc

    async def build_image(self, context: BuildContext) -> str:
        if not context.tags:
            raise ImageServiceError(ImageErrorType.BUILD_FAILED, "At least one tag is required to build an image")

        def _build() -> str:
            client = self._get_client()
            logger.info("Building image '%s' from '%s'", context.tags[0], context.context_dir)
            try:
                image, _ = client.images.build(
                    path=str(context.context_dir),
                    dockerfile=context.dockerfile,
                    tag=context.tags[0],
                    buildargs=context.build_args or None,
                    labels=context.labels or None,
                    rm=True,
                )
            except BuildError as exc:
                raise ImageServiceError(ImageErrorType.BUILD_FAILED, f"Build failed: {exc.msg}") from exc
            except APIError as exc:
                raise ImageServiceError(ImageErrorType.BUILD_FAILED, f"Build failed: {exc}") from exc
            for extra in context.tags[1:]:
                repository, tag = split_image_reference(extra)
                image.tag(repository, tag=tag)
            logger.info("Built image %s (%s)", context.tags[0], image.short_id)
            return str(image.id)

        return await asyncio.to_thread(_build)

    async def tag_image(self, source_ref: str, target_refs: list[str]) -> None:
        def _tag() -> None:
            image = self._get_image(source_ref)
            for target in target_refs:
                repository, tag = split_image_reference(target)
                try:
                    ok = image.tag(repository, tag=tag)
                except APIError as exc:
                    raise ImageServiceError(ImageErrorType.TAG_FAILED, f"Cannot tag '{source_ref}' as '{target}': {exc}") from exc
                if not ok:
                    raise ImageServiceError(ImageErrorType.TAG_FAILED, f"Cannot tag '{source_ref}' as '{target}'")
                logger.info("Tagged %s -> %s", source_ref, target)

        await asyncio.to_thread(_tag)

    async def save_image(self, ref: str, output_path: Path, compression: SaveCompression) -> None:
        def _save() -> None:
            image = self._get_image(ref)
            try:
                _write_archive(image.save(named=True), output_path, compression)
            except (APIError, OSError) as exc:
                raise ImageServiceError(ImageErrorType.SAVE_FAILED, f"Cannot save '{ref}' to {output_path}: {exc}") from exc
            logger.info("Saved %s to %s (%s)", ref, output_path, compression.name)

        await asyncio.to_thread(_save)

    async def push_image(self, ref: str, auth: AuthConfig | None = None) -> None:
        def _push() -> None:
            client = self._get_client()
            repository, tag = split_image_reference(ref)
            auth_config = auth.to_docker() if auth is not None and auth.has_credentials else None
            try:
                for line in client.images.push(repository, tag=tag, auth_config=auth_config, stream=True, decode=True):
                    error = line.get("error") if isinstance(line, dict) else None
                    if error:
                        lowered = error.lower()
                        if "unauthorized" in lowered or "denied" in lowered:
                            raise ImageServiceError(ImageErrorType.AUTHENTICATION_FAILED, f"Push of '{ref}' rejected: {error}")
                        raise ImageServiceError(ImageErrorType.PUSH_FAILED, f"Push of '{ref}' failed: {error}")
            except APIError as exc:
                raise ImageServiceError(ImageErrorType.PUSH_FAILED, f"Push of '{ref}' failed: {exc}") from exc
            except OSError as exc:
                raise ImageServiceError(ImageErrorType.NETWORK_ERROR, f"Push of '{ref}' failed: {exc}") from exc
            logger.info("Pushed %s", ref)

        await asyncio.to_thread(_push)
