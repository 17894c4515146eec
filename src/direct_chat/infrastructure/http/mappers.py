from __future__ import annotations

from direct_chat.application.dto.message import OutboundMessageDTO
from direct_chat.domain.entities.identity import Identity
from direct_chat.domain.entities.message import Message
from direct_chat.infrastructure.http.schemas import ChatMessagePayload, LoginResponse, MessageView


def view_to_entity(view: MessageView) -> Message:
    return Message(
        id=view.id,
        conversation_id=view.conversation_id,
        sender_id=view.sender_id,
        recipient_id=view.recipient_id,
        sender_name=view.sender_name,
        content=view.content,
        sent_at=view.sent_at,
    )


def login_to_identity(resp: LoginResponse) -> Identity:
    return Identity(
        participant_id=resp.participant_id,
        display_name=resp.display_name,
        username=resp.username,
    )


def outbound_to_payload(dto: OutboundMessageDTO) -> ChatMessagePayload:
    return ChatMessagePayload(
        conversation_id=dto.conversation_id,
        sender_id=dto.sender_id,
        recipient_id=dto.recipient_id,
        content=dto.content,
    )
