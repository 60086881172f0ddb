"""Deliver processed screenshots to a Telegram chat via the Bot API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from models.processed_item import ContentAnalysis, ProcessedItem
from services.notification.message_format import (
    CAPTION_LIMIT,
    MESSAGE_LIMIT,
    build_body,
    build_caption,
    build_header,
    build_keyboard,
    truncate_html_text,
)
from utils.errors import NotificationDeliveryError

LOGGER = logging.getLogger(__name__)
TELEGRAM_API_BASE = "https://api.telegram.org"


class NullNotifier:
    """Stand-in used when no notification channel is configured."""

    configured = False

    async def notify(
        self,
        item: ProcessedItem,
        image_bytes: bytes,
        *,
        summary: Optional[str] = None,
        error: Optional[str] = None,
        analysis_id: Optional[str] = None,
        content_analysis: Optional[ContentAnalysis] = None,
    ) -> bool:
        LOGGER.debug("Notification channel not configured; skipping item %s", item.id)
        return False

    async def close(self) -> None:
        return None


class TelegramNotifier:
    """Send the screenshot and its analysis to one Telegram chat.

    Args:
        bot_token: Bot API token.
        chat_id: Target chat id.
        http_client: Optional shared `httpx.AsyncClient` (owned by the caller when given).
        timeout_seconds: Request timeout when the notifier creates its own client.
    """

    configured = True

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        if not bot_token or not chat_id:
            raise ValueError("Telegram bot token and chat id are required.")
        self.chat_id = str(chat_id)
        self._base_url = f"{api_base}/bot{bot_token}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def notify(
        self,
        item: ProcessedItem,
        image_bytes: bytes,
        *,
        summary: Optional[str] = None,
        error: Optional[str] = None,
        analysis_id: Optional[str] = None,
        content_analysis: Optional[ContentAnalysis] = None,
    ) -> bool:
        """Send the photo with caption and follow-up buttons.

        Raises:
            NotificationDeliveryError: If Telegram rejects a request or is unreachable.
        """
        keyboard = build_keyboard(analysis_id if summary else None, content_analysis)
        caption = build_caption(item.source, item.timestamp, summary, error)

        if len(caption) <= CAPTION_LIMIT:
            await self._send_photo(item, image_bytes, caption, keyboard)
            return True

        # Long analyses go in a follow-up text message; the photo keeps just the header.
        await self._send_photo(item, image_bytes, build_header(item.source, item.timestamp), None)
        text = truncate_html_text(build_body(summary, error), MESSAGE_LIMIT)
        await self._send_message(text, keyboard)
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send_photo(
        self,
        item: ProcessedItem,
        image_bytes: bytes,
        caption: str,
        keyboard: Optional[Dict[str, Any]],
    ) -> None:
        data: Dict[str, Any] = {"chat_id": self.chat_id, "caption": caption, "parse_mode": "HTML"}
        if keyboard:
            data["reply_markup"] = json.dumps(keyboard)
        files = {"photo": (item.name, image_bytes, item.mime_type)}
        await self._post("sendPhoto", data=data, files=files)

    async def _send_message(self, text: str, keyboard: Optional[Dict[str, Any]]) -> None:
        payload: Dict[str, Any] = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}
        if keyboard:
            payload["reply_markup"] = keyboard
        await self._post("sendMessage", json=payload)

    async def _post(self, method: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.post(f"{self._base_url}/{method}", **kwargs)
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(f"Telegram {method} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != 200 or not body.get("ok", False):
            description = body.get("description") or response.text[:200]
            raise NotificationDeliveryError(
                f"Telegram {method} error {response.status_code}: {description}"
            )
        return body
