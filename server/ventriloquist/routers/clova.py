"""Clova Extension Kit endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from ..models import schemas

router = APIRouter(prefix="/clova", tags=["clova"])


@router.post("")
async def clova_endpoint(payload: schemas.CEKRequest, request: Request) -> dict[str, Any]:
    """Handle one Clova turn and return the CEK response."""

    response = await request.app.state.voice_dispatcher.dispatch(payload)
    return response.model_dump(by_alias=True, exclude_none=True)
