"""Webhook delivery of the run summary."""

from __future__ import annotations

import bittensor as bt
import httpx

from .report import RunReport


class WebhookNotifier:
    """POSTs ``{"text": ...}`` to a chat-style webhook. Delivery failures are logged, never raised."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def notify(self, report: RunReport) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json={"text": report.render_text()})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            bt.logging.warning({"notifier": {"status": "failed", "error": str(e)}})
            return False
        bt.logging.debug({"notifier": {"status": "sent"}})
        return True


__all__ = ["WebhookNotifier"]
