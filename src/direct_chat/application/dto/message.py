from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OutboundMessageDTO:
    conversation_id: int
    sender_id: int
    content: str
    recipient_id: int | None = None
