"""Session inspection and explicit stop endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from ..models import schemas
from ..services.correlation import session_key, template_key
from ..services.orchestration import InstanceStatus

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _to_response(status: Optional[InstanceStatus]) -> Optional[schemas.InstanceStatusResponse]:
    if status is None:
        return None
    return schemas.InstanceStatusResponse(
        instance_id=status.instance_id,
        name=status.name,
        runtime_status=status.runtime_status.value,
        output=status.output,
        created_at=status.created_at,
        last_updated_at=status.last_updated_at,
    )


@router.get("/{user_id}", response_model=schemas.SessionStatusResponse)
async def get_session_status(user_id: str, request: Request) -> schemas.SessionStatusResponse:
    """Return the current session and template-build status for the user."""

    engine = request.app.state.engine
    return schemas.SessionStatusResponse(
        user_id=user_id,
        session=_to_response(await engine.get_status(session_key(user_id))),
        template=_to_response(await engine.get_status(template_key(user_id))),
    )


@router.delete("/{user_id}", response_model=schemas.TerminateResponse)
async def terminate_session(user_id: str, request: Request, reason: str = "user canceled") -> schemas.TerminateResponse:
    """Stop the user's live session."""

    key = session_key(user_id)
    if not await request.app.state.engine.terminate(key, reason):
        raise HTTPException(status_code=404, detail="No live session for this user")
    return schemas.TerminateResponse(instance_id=key, reason=reason)
