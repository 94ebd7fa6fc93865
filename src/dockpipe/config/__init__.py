"""Configuration models and loader."""

from __future__ import annotations

from dockpipe.config.loader import config_root, find_config_file, load_config
from dockpipe.config.models import DockpipeConfig

__all__ = ["DockpipeConfig", "config_root", "find_config_file", "load_config"]
