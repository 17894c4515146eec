from __future__ import annotations

from direct_chat.application.dto.message import OutboundMessageDTO
from direct_chat.domain.entities.message import Message
from direct_chat.infrastructure.http.mappers import outbound_to_payload, view_to_entity
from direct_chat.infrastructure.http.schemas import MessageView


def serialize_outbound(dto: OutboundMessageDTO) -> str:
    payload = outbound_to_payload(dto)
    return payload.model_dump_json(by_alias=True, exclude_none=True)


def deserialize_message(raw: str | bytes) -> Message:
    """Decode one broker delivery. Raises pydantic.ValidationError when malformed."""
    return view_to_entity(MessageView.model_validate_json(raw))
