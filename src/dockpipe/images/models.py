"""Data models for image operations: references, compression, registry auth."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class SaveCompression(Enum):
    """Archive format used when saving an image to disk."""

    NONE = "tar"
    GZIP = "tar.gz"
    BZIP2 = "tar.bz2"
    XZ = "tar.xz"
    ZIP = "zip"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str | SaveCompression | None) -> SaveCompression:
        """Parse a compression name, extension or alias case-insensitively.

        An empty value means NONE. Anything unrecognised raises ValueError.
        """
        if isinstance(value, SaveCompression):
            return value
        if value is None or value == "":
            return cls.NONE
        if not isinstance(value, str):
            raise ValueError(f"Unknown compression {value!r}; expected a name such as gzip")
        key = value.strip().upper()
        aliases = {"GZ": cls.GZIP, "BZ2": cls.BZIP2, "TAR": cls.NONE}
        if key in aliases:
            return aliases[key]
        if key in cls.__members__:
            return cls[key]
        try:
            return cls(key.lower())
        except ValueError:
            names = ", ".join(member.name.lower() for member in cls)
            raise ValueError(f"Unknown compression {value!r}; expected one of {names}") from None


@dataclass(frozen=True)
class AuthConfig:
    """Registry credentials. Secrets never appear in repr()."""

    username: str = ""
    password: str = field(default="", repr=False)
    registry_token: str = field(default="", repr=False)
    server_address: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool((self.username and self.password) or self.registry_token)

    def to_docker(self) -> dict[str, str]:
        """Build the auth_config mapping accepted by the docker SDK."""
        auth: dict[str, str] = {}
        if self.registry_token:
            auth["identitytoken"] = self.registry_token
        else:
            auth["username"] = self.username
            auth["password"] = self.password
        if self.server_address:
            auth["serveraddress"] = self.server_address
        return auth

    def __str__(self) -> str:
        secret = "****" if self.password or self.registry_token else ""
        return f"AuthConfig(username={self.username!r}, secret={secret!r}, server={self.server_address!r})"


@dataclass
class BuildContext:
    """Everything needed to build one image."""

    context_dir: Path
    dockerfile: str = "Dockerfile"
    tags: list[str] = field(default_factory=list)
    build_args: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_dir": str(self.context_dir),
            "dockerfile": self.dockerfile,
            "tags": list(self.tags),
            "build_args": dict(self.build_args),
            "labels": dict(self.labels),
        }


def build_image_references(
    registry: str,
    namespace: str,
    repository: str,
    image_name: str,
    tags: Sequence[str],
) -> list[str]:
    """Expand image coordinates into full ``name:tag`` references.

    ``repository`` takes precedence over ``namespace``/``image_name``; when
    neither naming style is set the result is empty.
    """
    if repository:
        base = f"{registry}/{repository}" if registry else repository
    elif image_name:
        parts = [p for p in (registry, namespace, image_name) if p]
        base = "/".join(parts)
    else:
        return []
    return [f"{base}:{tag}" for tag in tags]


def split_image_reference(reference: str) -> tuple[str, str]:
    """Split ``repo[:tag]`` into repository and tag, honouring registry ports."""
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1 :]
    return reference, "latest"
