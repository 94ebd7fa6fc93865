"""Locate, interpolate and validate the pipeline config file.

String values may reference the environment the way compose files do:
``${VAR}`` (left untouched when unset), ``${VAR:-default}`` and
``${VAR:?message}`` (unset or empty is an error). Registry credentials are
usually supplied this way.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from dockpipe.config.models import DockpipeConfig

CONFIG_FILENAME = ".dockpipe.yaml"
CONFIG_FILENAMES = (CONFIG_FILENAME, ".dockpipe.yml")

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?:(?P<op>:-|:\?)(?P<arg>[^}]*))?\}")


def _interpolate_env(value: str) -> str:
    def _substitute(match: re.Match[str]) -> str:
        name = match.group("name").strip()
        op, arg = match.group("op"), match.group("arg")
        current = os.environ.get(name)
        if op == ":-":
            return current if current else arg
        if op == ":?":
            if not current:
                raise ValueError(f"Required environment variable {name} is not set: {arg or 'no message'}")
            return current
        return match.group(0) if current is None else current

    return _ENV_REF.sub(_substitute, value)


def _interpolate_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return _interpolate_env(data)
    if isinstance(data, dict):
        return {key: _interpolate_recursive(item) for key, item in data.items()}
    if isinstance(data, list):
        return [_interpolate_recursive(item) for item in data]
    return data


def find_config_file(start: Path | None = None) -> Path | None:
    """Nearest config file in *start* (default cwd) or one of its parents."""
    directory = (start or Path.cwd()).resolve()
    for folder in (directory, *directory.parents):
        for filename in CONFIG_FILENAMES:
            candidate = folder / filename
            if candidate.is_file():
                return candidate
    return None


def load_config(path: Path | None = None) -> DockpipeConfig:
    """Read and validate the config at *path*, or the nearest one found.

    Raises FileNotFoundError when there is no config, and ValueError for
    invalid content or a missing required environment variable. Relative
    paths inside the file are resolved by callers, see ``config_root``.
    """
    config_path = path or find_config_file()
    if config_path is None or not config_path.exists():
        raise FileNotFoundError(
            f"Could not find {CONFIG_FILENAME}. Create one in the project root or pass --path."
        )
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid configuration in {config_path}: top level must be a mapping")
    try:
        return DockpipeConfig(**_interpolate_recursive(raw))
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}: {exc}") from exc


def config_root(path: Path | None = None) -> Path:
    """Directory that relative paths in the config are resolved against."""
    config_path = path or find_config_file()
    if config_path is None:
        return Path.cwd()
    return config_path.resolve().parent
