"""LINE Messaging API client and message builders."""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TEMPLATE_CAPTION = "Tap a line"
EMPTY_TEMPLATE_TEXT = "The template is empty."
BUTTON_LABEL_LIMIT = 40


class LineMessagingClient:
    """Long-lived handle around one ``httpx.AsyncClient`` for the Messaging API."""

    def __init__(
        self,
        *,
        access_token: Optional[str] = None,
        channel_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        cfg = settings or default_settings
        self._access_token = access_token if access_token is not None else cfg.line_channel_access_token
        self._channel_secret = channel_secret if channel_secret is not None else cfg.line_channel_secret
        raw_base = (base_url or cfg.line_api_base_url).strip()
        if not raw_base.startswith(("http://", "https://")):
            raise RuntimeError("LINE_API_BASE_URL must include http/https scheme")
        headers = {}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        self._client = httpx.AsyncClient(
            base_url=raw_base.rstrip("/"),
            headers=headers,
            timeout=timeout or cfg.line_request_timeout,
            transport=transport,
        )

    @property
    def verifies_signatures(self) -> bool:
        return bool(self._channel_secret)

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Check ``X-Line-Signature`` against the channel secret."""

        if not self._channel_secret:
            return True
        if not signature:
            return False
        digest = hmac.new(self._channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature)

    async def reply_message(self, reply_token: str, messages: Sequence[dict[str, Any]]) -> None:
        """Send up to five messages in reply to a webhook event."""

        resp = await self._client.post(
            "/v2/bot/message/reply",
            json={"replyToken": reply_token, "messages": list(messages)},
        )
        if resp.is_error:
            logger.error("LINE reply failed (%s): %s", resp.status_code, resp.text)
        resp.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


def text_message(text: str, quick_replies: Optional[Sequence[dict[str, Any]]] = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "text", "text": text}
    if quick_replies:
        message["quickReply"] = {"items": [{"type": "action", "action": action} for action in quick_replies]}
    return message


def postback_action(label: str, data: str) -> dict[str, Any]:
    return {"type": "postback", "label": label, "data": data}


def build_template_messages(lines: Sequence[str]) -> list[dict[str, Any]]:
    """Render template lines as a Flex bubble of buttons, preserving order.

    Each button sends its own line back as a chat message when tapped. An
    empty template becomes a plain notice since LINE rejects empty boxes.
    """

    if not lines:
        return [text_message(EMPTY_TEMPLATE_TEXT)]

    buttons = [
        {
            "type": "button",
            "action": {"type": "message", "label": line[:BUTTON_LABEL_LIMIT], "text": line},
        }
        for line in lines
    ]
    bubble = {
        "type": "bubble",
        "header": {
            "type": "box",
            "layout": "horizontal",
            "contents": [
                {
                    "type": "text",
                    "text": TEMPLATE_CAPTION,
                    "margin": "xs",
                    "size": "sm",
                    "align": "center",
                    "gravity": "bottom",
                    "weight": "bold",
                }
            ],
        },
        "footer": {"type": "box", "layout": "vertical", "spacing": "md", "flex": 0, "contents": buttons},
    }
    return [{"type": "flex", "altText": TEMPLATE_CAPTION, "contents": bubble}]
