"""The displayed message sequence of the selected conversation."""
from __future__ import annotations

from typing import Callable, Iterable

from direct_chat.domain.entities.message import Message

ChangeListener = Callable[["MessageStream"], None]


class MessageStream:
    """Snapshot-then-live sequence, ordered by arrival rather than ``sent_at``.

    Entries are unique by message id. Live messages that arrive before the
    snapshot are kept and re-applied after it unless the snapshot already
    contains them.
    """

    def __init__(self, on_change: ChangeListener | None = None) -> None:
        self._on_change = on_change
        self._conversation_id: int | None = None
        self._messages: list[Message] = []
        self._ids: set[int] = set()
        self._snapshot_loaded = False

    @property
    def conversation_id(self) -> int | None:
        return self._conversation_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def snapshot_loaded(self) -> bool:
        return self._snapshot_loaded

    def __len__(self) -> int:
        return len(self._messages)

    def reset(self, conversation_id: int | None) -> None:
        self._conversation_id = conversation_id
        self._messages = []
        self._ids = set()
        self._snapshot_loaded = False
        self._notify()

    def clear(self) -> None:
        self.reset(None)

    def replace(self, conversation_id: int, snapshot: Iterable[Message]) -> bool:
        if conversation_id != self._conversation_id:
            return False

        early_live = [] if self._snapshot_loaded else self._messages
        merged: list[Message] = []
        ids: set[int] = set()
        for message in [*snapshot, *early_live]:
            if message.conversation_id != conversation_id or message.id in ids:
                continue
            ids.add(message.id)
            merged.append(message)

        self._messages = merged
        self._ids = ids
        self._snapshot_loaded = True
        self._notify()
        return True

    def append(self, message: Message) -> bool:
        if self._conversation_id is None or message.conversation_id != self._conversation_id:
            return False
        if message.id in self._ids:
            return False
        self._messages.append(message)
        self._ids.add(message.id)
        self._notify()
        return True

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
