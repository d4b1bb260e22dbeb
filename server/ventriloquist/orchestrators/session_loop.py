"""Session loop: waits for one LINE message and hands it to the voice side."""
from __future__ import annotations

import logging

from ..services.orchestration import OrchestrationContext

logger = logging.getLogger(__name__)

SESSION_ORCHESTRATOR = "WaitForLineInput"
LINE_INPUT_EVENT = "LineInput"


async def wait_for_line_input(context: OrchestrationContext) -> str:
    """Return the payload of the first ``LineInput`` event, unchanged.

    The voice dispatcher starts a fresh instance after relaying each answer,
    so one instance only ever carries a single message.
    """

    try:
        return await context.wait_for_external_event(LINE_INPUT_EVENT)
    except Exception:
        logger.exception("[Session %s] Failed while waiting for LINE input", context.instance_id)
        raise
