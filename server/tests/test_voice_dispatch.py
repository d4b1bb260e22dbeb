from __future__ import annotations

import asyncio
from dataclasses import replace

from conftest import MemoryInstanceStore, settle
from ventriloquist.models.schemas import CEKRequest, LineEvent
from ventriloquist.orchestrators.session_loop import LINE_INPUT_EVENT, SESSION_ORCHESTRATOR
from ventriloquist.services.chat_dispatch import ChatDispatcher
from ventriloquist.services.orchestration import RuntimeStatus
from ventriloquist.services.voice_dispatch import (
    CLOSING_TEXT,
    FAILED_TEXT,
    LAUNCH_TEXT,
    TERMINATED_TEXT,
    VoiceDispatcher,
    VoiceTurn,
    classify_turn,
)

USER = "U-clova-1"


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _cek(request: dict) -> CEKRequest:
    return CEKRequest.model_validate(
        {
            "version": "1.0",
            "session": {"sessionId": "s-1", "new": False, "user": {"userId": USER}},
            "request": request,
        }
    )


LAUNCH = {"type": "LaunchRequest"}
PLAY_FINISHED = {"type": "EventRequest", "event": {"namespace": "AudioPlayer", "name": "PlayFinished"}}
PLAY_PAUSED = {"type": "EventRequest", "event": {"namespace": "AudioPlayer", "name": "PlayPaused"}}
SESSION_ENDED = {"type": "SessionEndedRequest"}


def _texts(response) -> list[str]:  # noqa: ANN001
    speech = response.response.output_speech
    if speech is None:
        return []
    values = speech.values if isinstance(speech.values, list) else [speech.values]
    return [v.value for v in values]


def _has_keep_waiting(response) -> bool:  # noqa: ANN001
    return any(
        d["header"] == {"namespace": "AudioPlayer", "name": "Play"}
        and d["payload"]["playBehavior"] == "REPLACE_ALL"
        for d in response.response.directives
    )


def test_classify_turn() -> None:
    assert classify_turn(_cek(LAUNCH)) is VoiceTurn.LAUNCH
    assert classify_turn(_cek(PLAY_FINISHED)) is VoiceTurn.PLAYBACK_FINISHED
    assert classify_turn(_cek(PLAY_PAUSED)) is VoiceTurn.PLAYBACK_PAUSED
    assert classify_turn(_cek(SESSION_ENDED)) is VoiceTurn.SESSION_ENDED
    assert classify_turn(_cek({"type": "IntentRequest", "intent": {"name": "Clova.GuideIntent"}})) is VoiceTurn.INTENT
    other = {"type": "EventRequest", "event": {"namespace": "AudioPlayer", "name": "PlayStarted"}}
    assert classify_turn(_cek(other)) is VoiceTurn.OTHER_EVENT


def test_launch_starts_session_and_keeps_waiting(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        response = await VoiceDispatcher(engine, test_settings).dispatch(_cek(LAUNCH))
        await settle()

        assert _has_keep_waiting(response)
        assert response.response.directives[0]["payload"]["audioItem"]["stream"]["url"] == test_settings.silent_audio_url
        assert _texts(response) == [LAUNCH_TEXT]
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.RUNNING

    _run(scenario())


def test_playback_finished_while_waiting_only_keeps_waiting(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()

        response = await dispatcher.dispatch(_cek(PLAY_FINISHED))
        assert _has_keep_waiting(response)
        assert _texts(response) == []

    _run(scenario())


def test_playback_finished_after_answer_speaks_and_restarts(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()
        await engine.raise_event(USER, LINE_INPUT_EVENT, "good morning")
        await settle()
        answered = await engine.get_status(USER)
        assert answered.runtime_status is RuntimeStatus.COMPLETED

        response = await dispatcher.dispatch(_cek(PLAY_FINISHED))
        await settle()

        assert _has_keep_waiting(response)
        assert _texts(response) == ["good morning"]
        restarted = await engine.get_status(USER)
        assert restarted.runtime_status is RuntimeStatus.RUNNING
        assert restarted.created_at >= answered.created_at

    _run(scenario())


def test_playback_finished_after_failure_reports_once_without_restart(make_engine, test_settings) -> None:
    async def failing(context):  # noqa: ANN001
        raise RuntimeError("upstream fault")

    async def scenario():
        engine = make_engine()
        engine.register_orchestrator(SESSION_ORCHESTRATOR, failing)
        dispatcher = VoiceDispatcher(engine, test_settings)
        await engine.start(SESSION_ORCHESTRATOR, USER)
        await settle()

        response = await dispatcher.dispatch(_cek(PLAY_FINISHED))
        await settle()

        assert _texts(response) == [FAILED_TEXT]
        assert response.response.directives == []
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.FAILED

    _run(scenario())


def test_playback_finished_after_termination_reports_end(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()
        await engine.terminate(USER, "user canceled")

        response = await dispatcher.dispatch(_cek(PLAY_FINISHED))
        assert _texts(response) == [TERMINATED_TEXT]
        assert response.response.directives == []
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.TERMINATED

    _run(scenario())


def test_playback_finished_without_any_session_reports_end(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        response = await VoiceDispatcher(engine, test_settings).dispatch(_cek(PLAY_FINISHED))
        assert _texts(response) == [TERMINATED_TEXT]
        assert await engine.get_status(USER) is None

    _run(scenario())


def test_playback_paused_terminates_session(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()

        response = await dispatcher.dispatch(_cek(PLAY_PAUSED))
        status = await engine.get_status(USER)
        assert status.runtime_status is RuntimeStatus.TERMINATED
        assert status.output == "paused"
        assert _texts(response) == []

    _run(scenario())


def test_session_ended_terminates_and_says_goodbye(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()

        response = await dispatcher.dispatch(_cek(SESSION_ENDED))
        status = await engine.get_status(USER)
        assert status.runtime_status is RuntimeStatus.TERMINATED
        assert status.output == "ended"
        assert _texts(response) == [CLOSING_TEXT]

    _run(scenario())


def test_intent_requests_are_ignored(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        response = await VoiceDispatcher(engine, test_settings).dispatch(
            _cek({"type": "IntentRequest", "intent": {"name": "Clova.YesIntent"}})
        )
        assert response.response.directives == []
        assert _texts(response) == []
        assert await engine.get_status(USER) is None

    _run(scenario())


def test_launch_policy_keep_reuses_live_session(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, replace(test_settings, session_launch_policy="keep"))
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()
        await engine.raise_event(USER, LINE_INPUT_EVENT, "buffered")
        first = await engine.get_status(USER)

        response = await dispatcher.dispatch(_cek(LAUNCH))
        second = await engine.get_status(USER)
        assert _has_keep_waiting(response)
        assert second.created_at == first.created_at
        assert second.pending(LINE_INPUT_EVENT) == 1

    _run(scenario())


def test_launch_policy_replace_starts_fresh_session(make_engine, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        dispatcher = VoiceDispatcher(engine, test_settings)
        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()
        await engine.raise_event(USER, LINE_INPUT_EVENT, "dropped with the old session")

        await dispatcher.dispatch(_cek(LAUNCH))
        await settle()
        status = await engine.get_status(USER)
        assert status.runtime_status is RuntimeStatus.RUNNING
        assert status.pending(LINE_INPUT_EVENT) == 0

    _run(scenario())


def test_launch_chat_hello_then_playback_finished(make_engine, line_client, test_settings) -> None:
    async def scenario():
        engine = make_engine()
        voice = VoiceDispatcher(engine, test_settings)
        chat = ChatDispatcher(engine, line_client, test_settings)

        launched = await voice.dispatch(_cek(LAUNCH))
        await settle()
        assert _has_keep_waiting(launched)
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.RUNNING

        await chat.handle_events(
            [
                LineEvent.model_validate(
                    {
                        "type": "message",
                        "replyToken": "r-1",
                        "source": {"type": "user", "userId": USER},
                        "message": {"id": "m-1", "type": "text", "text": "hello"},
                    }
                )
            ]
        )
        await settle()
        assert (await engine.get_status(USER)).output == "hello"

        finished = await voice.dispatch(_cek(PLAY_FINISHED))
        await settle()
        assert _has_keep_waiting(finished)
        assert _texts(finished) == ["hello"]
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.RUNNING
        assert line_client.replies == []

    _run(scenario())


def test_answer_given_before_restart_is_spoken_after_restart(make_engine, test_settings) -> None:
    store = MemoryInstanceStore()

    async def before_restart():
        engine = make_engine(store)
        await VoiceDispatcher(engine, test_settings).dispatch(_cek(LAUNCH))
        await settle()
        await engine.raise_event(USER, LINE_INPUT_EVENT, "hello")
        await settle()
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.COMPLETED
        await engine.shutdown()

    async def after_restart():
        engine = make_engine(store)
        assert await engine.resume() == 0
        response = await VoiceDispatcher(engine, test_settings).dispatch(_cek(PLAY_FINISHED))
        await settle()

        assert _texts(response) == ["hello"]
        assert _has_keep_waiting(response)
        assert (await engine.get_status(USER)).runtime_status is RuntimeStatus.RUNNING

    _run(before_restart())
    _run(after_restart())
