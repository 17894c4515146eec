from __future__ import annotations

from typing import Protocol

from direct_chat.domain.entities.message import Message


class HistoryGateway(Protocol):
    async def fetch_messages(self, conversation_id: int) -> list[Message]: ...
