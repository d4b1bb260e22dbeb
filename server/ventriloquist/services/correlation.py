"""Maps platform user ids to orchestration instance keys and session phases."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from .orchestration import InstanceStatus, RuntimeStatus, WAITING_STATUSES

TEMPLATE_KEY_PREFIX = "tmpl_"


class SessionPhase(Enum):
    """What a voice turn should do, derived from the session's runtime status."""

    WAITING = "waiting"
    ANSWERED = "answered"
    FAILED = "failed"
    ENDED = "ended"


def session_key(user_id: str) -> str:
    if not user_id:
        raise ValueError("user_id is required to address a session")
    return user_id


def template_key(user_id: str) -> str:
    # Namespaced so a user's template build never collides with their session.
    return TEMPLATE_KEY_PREFIX + session_key(user_id)


def is_waiting(status: Optional[InstanceStatus]) -> bool:
    return status is not None and status.runtime_status in WAITING_STATUSES


def session_phase(status: Optional[InstanceStatus]) -> SessionPhase:
    """Classify a session status; a missing instance counts as ended."""

    if status is None:
        return SessionPhase.ENDED
    if status.runtime_status in WAITING_STATUSES:
        return SessionPhase.WAITING
    if status.runtime_status is RuntimeStatus.COMPLETED:
        return SessionPhase.ANSWERED
    if status.runtime_status is RuntimeStatus.FAILED:
        return SessionPhase.FAILED
    return SessionPhase.ENDED
