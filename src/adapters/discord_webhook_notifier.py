"""Discord webhook notification adapter.

A channel reference is either a webhook URL or the name of an environment
variable holding one, so secrets can stay out of config.json.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional

import httpx

from core.errors import ChannelUnavailable
from core.models import Notification

WEBHOOK_PREFIXES = ("https://", "http://")
MAX_FIELD_CHARS = 1024
MAX_DESCRIPTION_CHARS = 4096


def resolve_webhook_url(channel_ref: str) -> str:
    """Turn a channel reference into a webhook URL or raise ChannelUnavailable."""

    ref = (channel_ref or "").strip()
    if ref.startswith(WEBHOOK_PREFIXES):
        return ref
    url = (os.getenv(ref) or "").strip() if ref else ""
    if not url.startswith(WEBHOOK_PREFIXES):
        raise ChannelUnavailable(f"Channel reference {ref!r} does not resolve to a webhook URL")
    return url


def _clip(value: str, limit: int) -> str:
    value = (value or "").strip() or "-"
    if len(value) > limit:
        return value[: limit - 3] + "..."
    return value


def build_payload(notification: Notification) -> Dict[str, Any]:
    """Create the webhook JSON body for one notification."""

    embed: Dict[str, Any] = {
        "title": notification.title,
        "description": _clip(notification.description, MAX_DESCRIPTION_CHARS),
        "color": notification.color,
        "fields": [
            {"name": field.name, "value": _clip(field.value, MAX_FIELD_CHARS), "inline": field.inline}
            for field in notification.fields
        ],
    }
    if notification.footer:
        embed["footer"] = {"text": notification.footer}
    if notification.timestamp is not None:
        embed["timestamp"] = notification.timestamp.isoformat()
    return {"embeds": [embed], "allowed_mentions": {"parse": []}}


class DiscordWebhookNotifier:
    """Notifier adapter that posts embeds to Discord webhooks."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        if client is None:
            # Tight timeouts: delivery is best-effort and must not stall a sweep.
            timeout = httpx.Timeout(12.0, connect=4.0)
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            client = httpx.AsyncClient(timeout=timeout, limits=limits)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, notification: Notification) -> None:
        """Post the notification, retrying once on transport or 5xx errors."""

        url = resolve_webhook_url(notification.channel_ref)
        payload = build_payload(notification)

        last_exc: Optional[Exception] = None
        for attempt in range(2):
            try:
                resp = await self._client.post(url, json=payload)
                resp.raise_for_status()
                return
            except httpx.RequestError as exc:
                last_exc = exc
                await asyncio.sleep(0.5 * (2**attempt))
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                status = exc.response.status_code
                if status == 404:
                    raise ChannelUnavailable(f"Webhook for {notification.title!r} no longer exists") from exc
                if 500 <= status < 600 and attempt == 0:
                    await asyncio.sleep(0.5)
                    continue
                break

        raise last_exc if last_exc else RuntimeError("Discord webhook post failed")
