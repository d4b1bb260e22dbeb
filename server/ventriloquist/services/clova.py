"""Assembly of Clova Extension Kit responses."""
from __future__ import annotations

from typing import Any, Optional

from ..config import Settings, settings as default_settings
from ..models.schemas import CEKResponse, CEKResponseBody, OutputSpeech, SpeechValue

SILENT_AUDIO_ITEM_ID = "silent-audio"


def keep_waiting_directive(audio_url: str) -> dict[str, Any]:
    """AudioPlayer.Play directive that loops a silent track.

    When playback finishes Clova sends ``AudioPlayer.PlayFinished``, which is
    the turn that lets the skill check for new input.
    """

    return {
        "header": {"namespace": "AudioPlayer", "name": "Play"},
        "payload": {
            "audioItem": {
                "audioItemId": SILENT_AUDIO_ITEM_ID,
                "titleText": "Ventriloquist",
                "titleSubText1": "Waiting for LINE",
                "titleSubText2": "",
                "stream": {
                    "beginAtInMilliseconds": 0,
                    "progressReport": {
                        "progressReportDelayInMilliseconds": None,
                        "progressReportIntervalInMilliseconds": None,
                        "progressReportPositionInMilliseconds": None,
                    },
                    "url": audio_url,
                    "urlPlayable": True,
                },
            },
            "playBehavior": "REPLACE_ALL",
            "source": {"name": "Ventriloquist"},
        },
    }


class CEKResponseBuilder:
    """Collects speech and directives for a single turn."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or default_settings
        self.texts: list[str] = []
        self.directives: list[dict[str, Any]] = []
        self.should_end_session = False

    def add_text(self, text: str) -> "CEKResponseBuilder":
        self.texts.append(text)
        return self

    def keep_waiting(self) -> "CEKResponseBuilder":
        self.directives.append(keep_waiting_directive(self._settings.silent_audio_url))
        return self

    def end_session(self) -> "CEKResponseBuilder":
        self.should_end_session = True
        return self

    def build(self) -> CEKResponse:
        lang = self._settings.speech_lang
        speech: Optional[OutputSpeech] = None
        if len(self.texts) == 1:
            speech = OutputSpeech(type="SimpleSpeech", values=SpeechValue(lang=lang, value=self.texts[0]))
        elif self.texts:
            speech = OutputSpeech(
                type="SpeechList",
                values=[SpeechValue(lang=lang, value=text) for text in self.texts],
            )
        return CEKResponse(
            response=CEKResponseBody(
                output_speech=speech,
                directives=list(self.directives),
                should_end_session=self.should_end_session,
            )
        )
