from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Message:
    id: int
    conversation_id: int
    sender_id: int
    sender_name: str
    content: str
    sent_at: datetime
    recipient_id: int | None = None

    def local_time(self) -> str:
        """``sent_at`` rendered as local wall-clock time."""
        return self.sent_at.astimezone().strftime("%X")
