"""Chat-side dispatch: routes LINE webhook events into the orchestration engine."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import parse_qs

from ..config import Settings, settings as default_settings
from ..models.schemas import LineEvent
from ..orchestrators.session_loop import LINE_INPUT_EVENT
from ..orchestrators.template_loop import (
    ADD_TO_TEMPLATE_EVENT,
    TEMPLATE_ORCHESTRATOR,
    is_terminator,
    terminator_payload,
)
from .correlation import is_waiting, session_key, template_key
from .idempotency import WebhookEventCache
from .line_messaging import LineMessagingClient, postback_action, text_message
from .orchestration import DurableOrchestrationEngine, STOPPED_STATUSES

logger = logging.getLogger(__name__)

ADDED_TO_TEMPLATE_TEXT = "Added to the template."
FINISH_TEMPLATE_LABEL = "Finish"
RESERVED_TEXT = "That message cannot be added to a template."
LAUNCH_SKILL_TEXT = "Please launch the ventriloquist skill on Clova first."
BUSY_TEXT = "Clova is still speaking. Please send that again in a moment."
TEMPLATE_INSTRUCTIONS_TEXT = "Send the lines you want to add to the template."


class UpdateType(Enum):
    TEXT_MESSAGE = "text_message"
    POSTBACK = "postback"
    UNSUPPORTED = "unsupported"


class PostbackAction(str, Enum):
    START_TEMPLATE_SETTING = "startTemplateSetting"
    END_TEMPLATE_SETTING = "endTemplateSetting"
    TERMINATE_SESSION = "terminateSession"


def classify_update(event: LineEvent) -> UpdateType:
    if event.type == "message" and event.message is not None and event.message.type == "text":
        return UpdateType.TEXT_MESSAGE
    if event.type == "postback" and event.postback is not None:
        return UpdateType.POSTBACK
    return UpdateType.UNSUPPORTED


def parse_postback_action(data: str) -> Optional[PostbackAction]:
    """Read the ``action`` field of ``action=<name>`` postback data."""

    values = parse_qs(data).get("action")
    if not values:
        return None
    try:
        return PostbackAction(values[0])
    except ValueError:
        return None


class ChatDispatcher:
    """Handles LINE updates for the session and template loops."""

    def __init__(
        self,
        engine: DurableOrchestrationEngine,
        line_client: LineMessagingClient,
        settings: Optional[Settings] = None,
        seen_events: Optional[WebhookEventCache] = None,
    ) -> None:
        self._engine = engine
        self._line = line_client
        self._settings = settings or default_settings
        self._seen_events = seen_events or WebhookEventCache()

    async def handle_events(self, events: Iterable[LineEvent]) -> None:
        """Handle each event in order; one failing event never stops the rest."""

        for event in events:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle LINE %s event %s", event.type, event.webhook_event_id)

    async def handle_event(self, event: LineEvent) -> None:
        if not self._seen_events.check_and_add(event.webhook_event_id):
            logger.info("Skipping redelivered LINE event %s", event.webhook_event_id)
            return

        user_id = event.user_id
        if not user_id:
            logger.warning("Ignoring LINE %s event without a user id", event.type)
            return

        update = classify_update(event)
        if update is UpdateType.TEXT_MESSAGE:
            await self._on_text(user_id, event.message.text or "", event.reply_token)
        elif update is UpdateType.POSTBACK:
            await self._on_postback(user_id, event.postback.data, event.reply_token)
        else:
            logger.debug("Ignoring unsupported LINE event type %s", event.type)

    async def _reply(self, reply_token: Optional[str], *messages: dict) -> None:
        if not reply_token:
            logger.warning("No reply token; dropping %d message(s)", len(messages))
            return
        await self._line.reply_message(reply_token, list(messages))

    async def _on_text(self, user_id: str, text: str, reply_token: Optional[str]) -> None:
        tmpl_key = template_key(user_id)
        if is_waiting(await self._engine.get_status(tmpl_key)):
            if is_terminator(text):
                await self._reply(reply_token, text_message(RESERVED_TEXT))
                return
            await self._engine.raise_event(tmpl_key, ADD_TO_TEMPLATE_EVENT, text)
            await self._reply(
                reply_token,
                text_message(
                    ADDED_TO_TEMPLATE_TEXT,
                    quick_replies=[
                        postback_action(FINISH_TEMPLATE_LABEL, f"action={PostbackAction.END_TEMPLATE_SETTING.value}")
                    ],
                ),
            )
            return

        await self._relay_to_session(user_id, text, reply_token)

    async def _relay_to_session(self, user_id: str, text: str, reply_token: Optional[str]) -> None:
        """Raise ``LineInput`` once the session is ready to take it.

        Between a relayed answer and the next PlayFinished turn the session is
        ``Completed``; the voice side restarts it on that turn. Until then, and
        while an earlier message is still unconsumed, keep polling.
        """

        key = session_key(user_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.chat_poll_timeout

        while True:
            status = await self._engine.get_status(key)
            if status is None or status.runtime_status in STOPPED_STATUSES:
                await self._reply(reply_token, text_message(LAUNCH_SKILL_TEXT))
                return
            if status.is_waiting and not status.pending(LINE_INPUT_EVENT):
                await self._engine.raise_event(key, LINE_INPUT_EVENT, text)
                logger.info(f"[Session {key}] Relayed LINE message")
                return
            if loop.time() >= deadline:
                logger.warning(
                    f"[Session {key}] Gave up waiting after {self._settings.chat_poll_timeout}s "
                    f"(status {status.runtime_status.value})"
                )
                await self._reply(reply_token, text_message(BUSY_TEXT))
                return
            await asyncio.sleep(self._settings.chat_poll_interval)

    async def _on_postback(self, user_id: str, data: str, reply_token: Optional[str]) -> None:
        action = parse_postback_action(data)
        if action is PostbackAction.START_TEMPLATE_SETTING:
            await self._reply(reply_token, text_message(TEMPLATE_INSTRUCTIONS_TEXT))
            await self._engine.start(TEMPLATE_ORCHESTRATOR, template_key(user_id))
        elif action is PostbackAction.END_TEMPLATE_SETTING:
            if not reply_token:
                logger.warning("endTemplateSetting without a reply token for %s", user_id)
                return
            await self._engine.raise_event(template_key(user_id), ADD_TO_TEMPLATE_EVENT, terminator_payload(reply_token))
        elif action is PostbackAction.TERMINATE_SESSION:
            await self._engine.terminate(session_key(user_id), "user canceled")
        else:
            logger.info("Ignoring unknown postback data %r", data)
