"""LINE Messaging API webhook endpoint."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ..models import schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/line", tags=["line"])


@router.post("/webhook", response_class=PlainTextResponse)
async def line_webhook(
    request: Request,
    x_line_signature: Optional[str] = Header(default=None),
) -> str:
    """Verify and dispatch a LINE webhook call.

    Anything past signature verification answers ``OK`` so LINE does not
    keep redelivering an update this service cannot use.
    """

    body = await request.body()
    if not request.app.state.line_client.verify_signature(body, x_line_signature):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        webhook = schemas.LineWebhook.model_validate_json(body)
    except ValidationError:
        logger.exception("Malformed LINE webhook body")
        return "OK"

    await request.app.state.chat_dispatcher.handle_events(webhook.events)
    return "OK"
