"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model for platform payloads that use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Clova Extension Kit
# ---------------------------------------------------------------------------


class CEKUser(CamelModel):
    user_id: str
    access_token: Optional[str] = None


class CEKSession(CamelModel):
    session_id: Optional[str] = None
    new: bool = False
    session_attributes: Dict[str, Any] = Field(default_factory=dict)
    user: CEKUser


class CEKEvent(CamelModel):
    namespace: str
    name: str
    payload: Optional[Dict[str, Any]] = None


class CEKIntent(CamelModel):
    name: str
    slots: Optional[Dict[str, Any]] = None


class CEKRequestBody(CamelModel):
    type: str = Field(..., description="LaunchRequest, IntentRequest, EventRequest or SessionEndedRequest")
    request_id: Optional[str] = None
    intent: Optional[CEKIntent] = None
    event: Optional[CEKEvent] = None


class CEKRequest(CamelModel):
    """Incoming turn notification from the Clova platform."""

    version: str = "1.0"
    session: CEKSession
    request: CEKRequestBody

    @property
    def user_id(self) -> str:
        return self.session.user.user_id


class SpeechValue(CamelModel):
    type: str = "PlainText"
    lang: str
    value: str


class OutputSpeech(CamelModel):
    type: str = Field(..., description="SimpleSpeech for one utterance, SpeechList for several")
    values: Union[SpeechValue, List[SpeechValue]]


class CEKResponseBody(CamelModel):
    output_speech: Optional[OutputSpeech] = None
    card: Dict[str, Any] = Field(default_factory=dict)
    directives: List[Dict[str, Any]] = Field(default_factory=list)
    should_end_session: bool = False


class CEKResponse(CamelModel):
    """Response returned to Clova for a single turn."""

    version: str = "1.0"
    session_attributes: Dict[str, Any] = Field(default_factory=dict)
    response: CEKResponseBody = Field(default_factory=CEKResponseBody)


# ---------------------------------------------------------------------------
# LINE Messaging API webhook
# ---------------------------------------------------------------------------


class LineSource(CamelModel):
    type: str = "user"
    user_id: Optional[str] = None


class LineMessage(CamelModel):
    id: Optional[str] = None
    type: str
    text: Optional[str] = None


class LinePostback(CamelModel):
    data: str = ""


class LineDeliveryContext(CamelModel):
    is_redelivery: bool = False


class LineEvent(CamelModel):
    """One entry of the webhook ``events`` array."""

    type: str
    reply_token: Optional[str] = None
    source: Optional[LineSource] = None
    message: Optional[LineMessage] = None
    postback: Optional[LinePostback] = None
    webhook_event_id: Optional[str] = None
    delivery_context: Optional[LineDeliveryContext] = None
    timestamp: Optional[int] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.source.user_id if self.source else None


class LineWebhook(CamelModel):
    destination: Optional[str] = None
    events: List[LineEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Status API
# ---------------------------------------------------------------------------


class InstanceStatusResponse(BaseModel):
    """Represents the current state of one orchestration instance."""

    instance_id: str
    name: str
    runtime_status: str
    output: Optional[Any] = None
    created_at: datetime
    last_updated_at: datetime


class SessionStatusResponse(BaseModel):
    """Session and template-build state for a single user."""

    user_id: str
    session: Optional[InstanceStatusResponse] = None
    template: Optional[InstanceStatusResponse] = None


class TerminateResponse(BaseModel):
    instance_id: str
    status: str = Field(default="Terminated")
    reason: str
