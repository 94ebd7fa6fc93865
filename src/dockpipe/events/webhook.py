"""Posts pipeline events to configured webhook URLs."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING

import httpx

from dockpipe.events.emitter import PipelineEvent

if TYPE_CHECKING:
    from dockpipe.config.models import WebhookConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Dockpipe-Signature"
EVENT_HEADER = "X-Dockpipe-Event"


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of *body*; receivers verify it against the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _subscribed(webhook: WebhookConfig, event_type: str) -> bool:
    return "*" in webhook.events or event_type in webhook.events


class WebhookListener:
    """EventListener that delivers in background tasks so a slow endpoint never stalls a pipeline."""

    def __init__(self, webhooks: list[WebhookConfig], timeout: float = 10.0) -> None:
        self._webhooks = webhooks
        self._timeout = timeout
        self._pending: set[asyncio.Task[None]] = set()

    async def on_event(self, event: PipelineEvent) -> None:
        targets = [wh for wh in self._webhooks if _subscribed(wh, event.event_type)]
        if not targets:
            return
        body = json.dumps(event.to_dict()).encode()
        for webhook in targets:
            delivery = asyncio.create_task(self._post(webhook, event.event_type, body), name=f"webhook-{webhook.url}")
            self._pending.add(delivery)
            delivery.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries before the event loop goes away."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _post(self, webhook: WebhookConfig, event_type: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json", EVENT_HEADER: event_type}
        if webhook.secret:
            headers[SIGNATURE_HEADER] = sign_payload(webhook.secret, body)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(webhook.url, content=body, headers=headers)
        except Exception:
            logger.exception("Webhook delivery failed for %s (event: %s)", webhook.url, event_type)
            return
        if response.is_error:
            logger.warning("Webhook %s answered %s for event %s", webhook.url, response.status_code, event_type)
