"""Voice-side dispatch: one Clova turn in, one CEK response out."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config import Settings, settings as default_settings
from ..models.schemas import CEKRequest, CEKResponse
from ..orchestrators.session_loop import SESSION_ORCHESTRATOR
from .clova import CEKResponseBuilder
from .correlation import SessionPhase, is_waiting, session_key, session_phase
from .orchestration import DurableOrchestrationEngine

logger = logging.getLogger(__name__)

LAUNCH_TEXT = "I will say whatever you send me on LINE."
FAILED_TEXT = "Something went wrong."
TERMINATED_TEXT = "Ending the ventriloquist."
CLOSING_TEXT = "Goodbye."


class VoiceTurn(Enum):
    LAUNCH = "launch"
    PLAYBACK_FINISHED = "playback_finished"
    PLAYBACK_PAUSED = "playback_paused"
    SESSION_ENDED = "session_ended"
    INTENT = "intent"
    OTHER_EVENT = "other_event"


def classify_turn(request: CEKRequest) -> VoiceTurn:
    body = request.request
    if body.type == "LaunchRequest":
        return VoiceTurn.LAUNCH
    if body.type == "SessionEndedRequest":
        return VoiceTurn.SESSION_ENDED
    if body.type == "IntentRequest":
        return VoiceTurn.INTENT
    if body.type == "EventRequest" and body.event is not None and body.event.namespace == "AudioPlayer":
        if body.event.name == "PlayFinished":
            return VoiceTurn.PLAYBACK_FINISHED
        if body.event.name == "PlayPaused":
            return VoiceTurn.PLAYBACK_PAUSED
    return VoiceTurn.OTHER_EVENT


class VoiceDispatcher:
    """Drives the session loop from Clova turns.

    Every turn is classified into a :class:`VoiceTurn` and handled by exactly
    one method. The session itself lives in the orchestration engine under the
    user's id; this class keeps no state between turns.
    """

    def __init__(self, engine: DurableOrchestrationEngine, settings: Optional[Settings] = None) -> None:
        self._engine = engine
        self._settings = settings or default_settings
        self._handlers: dict[VoiceTurn, Callable[[str, CEKResponseBuilder], Awaitable[None]]] = {
            VoiceTurn.LAUNCH: self._on_launch,
            VoiceTurn.PLAYBACK_FINISHED: self._on_playback_finished,
            VoiceTurn.PLAYBACK_PAUSED: self._on_playback_paused,
            VoiceTurn.SESSION_ENDED: self._on_session_ended,
            VoiceTurn.INTENT: self._ignore,
            VoiceTurn.OTHER_EVENT: self._ignore,
        }

    async def dispatch(self, request: CEKRequest) -> CEKResponse:
        turn = classify_turn(request)
        key = session_key(request.user_id)
        logger.info(f"[Session {key}] {request.request.type} -> {turn.value}")

        builder = CEKResponseBuilder(self._settings)
        await self._handlers[turn](key, builder)
        return builder.build()

    async def _start_session(self, key: str) -> None:
        await self._engine.start(SESSION_ORCHESTRATOR, key)

    async def _on_launch(self, key: str, builder: CEKResponseBuilder) -> None:
        if self._settings.session_launch_policy == "keep" and is_waiting(await self._engine.get_status(key)):
            logger.info(f"[Session {key}] Launch while a session is live; keeping it")
        else:
            await self._start_session(key)
        builder.add_text(LAUNCH_TEXT)
        builder.keep_waiting()

    async def _on_playback_finished(self, key: str, builder: CEKResponseBuilder) -> None:
        status = await self._engine.get_status(key)
        phase = session_phase(status)

        if phase is SessionPhase.WAITING:
            builder.keep_waiting()
        elif phase is SessionPhase.ANSWERED:
            builder.keep_waiting()
            builder.add_text(str(status.output))
            await self._start_session(key)
            logger.info(f"[Session {key}] Relayed answer and restarted the session")
        elif phase is SessionPhase.FAILED:
            logger.warning(f"[Session {key}] Session failed: {status.output}")
            builder.add_text(FAILED_TEXT)
        else:
            builder.add_text(TERMINATED_TEXT)

    async def _on_playback_paused(self, key: str, builder: CEKResponseBuilder) -> None:
        await self._engine.terminate(key, "paused")

    async def _on_session_ended(self, key: str, builder: CEKResponseBuilder) -> None:
        await self._engine.terminate(key, "ended")
        builder.add_text(CLOSING_TEXT)

    async def _ignore(self, key: str, builder: CEKResponseBuilder) -> None:
        return None
