"""Event emitter, listener protocol, and pipeline event dataclass."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from dockpipe.config.models import DockpipeConfig

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({"pipeline.started", "step.completed", "pipeline.completed", "failure.detected"})


@dataclass
class PipelineEvent:
    """A typed event emitted while a pipeline runs."""

    event_type: str  # "pipeline.started", "step.completed", etc.
    pipeline_name: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "pipeline_name": self.pipeline_name,
            "data": self.data,
        }


class EventListener(Protocol):
    """Protocol for consuming pipeline events."""

    async def on_event(self, event: PipelineEvent) -> None: ...


class EventEmitter:
    """Dispatches events to listeners; a failing listener never stops the pipeline."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: PipelineEvent) -> None:
        for listener in self._listeners:
            try:
                await listener.on_event(event)
            except Exception:
                logger.exception("Event listener error")

    async def drain(self) -> None:
        """Wait for listeners that deliver in the background."""
        for listener in self._listeners:
            drain = getattr(listener, "drain", None)
            if drain is not None:
                await drain()


def create_cli_emitter(config: DockpipeConfig) -> EventEmitter | None:
    """Create an emitter for CLI usage, or None when no webhooks are configured."""
    if not config.webhooks:
        return None
    from dockpipe.events.webhook import WebhookListener

    emitter = EventEmitter()
    emitter.add_listener(WebhookListener(config.webhooks))
    return emitter
