"""dockpipe: Docker image pipelines with compose-backed integration tests."""

from __future__ import annotations

__version__ = "0.1.0"
