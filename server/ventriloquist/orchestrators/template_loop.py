"""Template loop: collects LINE messages into a list of tappable lines."""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..services.line_messaging import LineMessagingClient, build_template_messages
from ..services.orchestration import ContinueAsNew, OrchestrationContext

logger = logging.getLogger(__name__)

TEMPLATE_ORCHESTRATOR = "MakeTemplate"
SEND_TEMPLATES_ACTIVITY = "SendTemplates"
ADD_TO_TEMPLATE_EVENT = "AddToTemplate"
TEMPLATE_TERMINATOR = "FinishMakingTemplate"


def terminator_payload(reply_token: str) -> str:
    return f"{TEMPLATE_TERMINATOR}_{reply_token}"


def is_terminator(value: str) -> bool:
    return value.startswith(TEMPLATE_TERMINATOR + "_")


def parse_terminator(value: str) -> Optional[str]:
    """Return the delivery token carried by a terminator payload, else None."""

    if not is_terminator(value):
        return None
    return value[len(TEMPLATE_TERMINATOR) + 1:]


async def make_template(context: OrchestrationContext) -> Any:
    """Wait for one ``AddToTemplate`` event and either append it or deliver."""

    lines = list(context.get_input() or [])
    value = await context.wait_for_external_event(ADD_TO_TEMPLATE_EVENT)

    token = parse_terminator(value)
    if token is not None:
        logger.info("Template %s finished with %d line(s)", context.instance_id, len(lines))
        await context.call_activity(SEND_TEMPLATES_ACTIVITY, {"reply_token": token, "lines": lines})
        return None

    lines.append(value)
    return ContinueAsNew(lines)


async def send_templates(client: LineMessagingClient, payload: dict[str, Any]) -> None:
    """Reply with the finished template as a list of buttons."""

    await client.reply_message(payload["reply_token"], build_template_messages(payload["lines"]))
