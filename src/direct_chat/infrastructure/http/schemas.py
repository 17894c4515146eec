"""Wire shapes exchanged with the chat service (camelCase JSON)."""
from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_camel = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(BaseModel):
    participant_id: int
    password: str

    model_config = _camel


class RegisterRequest(BaseModel):
    participant_id: int
    password: str
    display_name: str | None = None

    model_config = _camel


class LoginResponse(BaseModel):
    participant_id: int = Field(validation_alias=AliasChoices("participantId", "userId"))
    username: str = ""
    display_name: str

    model_config = _camel


class MessageView(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    recipient_id: int | None = None
    sender_name: str = ""
    content: str
    sent_at: datetime

    model_config = _camel


class ChatMessagePayload(BaseModel):
    conversation_id: int
    sender_id: int
    recipient_id: int | None = None
    content: str

    model_config = _camel
