"""Pipeline event system."""

from __future__ import annotations

from dockpipe.events.emitter import EVENT_TYPES, EventEmitter, EventListener, PipelineEvent, create_cli_emitter
from dockpipe.events.webhook import WebhookListener

__all__ = [
    "EVENT_TYPES",
    "EventEmitter",
    "EventListener",
    "PipelineEvent",
    "WebhookListener",
    "create_cli_emitter",
]
