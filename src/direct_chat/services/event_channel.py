"""Ordered delivery of connection events to a single consumer."""
from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from direct_chat.application.dto.events import ConnectionEvent

logger = logging.getLogger(__name__)

EventConsumer = Callable[[ConnectionEvent], None]


class EventChannel:
    """Delivers events in publish order, one at a time.

    An event published while another is being consumed is queued and
    delivered after the current consumer returns. The consumer is bound once.
    """

    def __init__(self) -> None:
        self._consumer: EventConsumer | None = None
        self._pending: deque[ConnectionEvent] = deque()
        self._draining = False

    def bind(self, consumer: EventConsumer) -> None:
        if self._consumer is not None:
            raise RuntimeError("EventChannel already has a consumer")
        self._consumer = consumer

    def publish(self, event: ConnectionEvent) -> None:
        self._pending.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                current = self._pending.popleft()
                if self._consumer is None:
                    logger.debug("No consumer bound, dropping %r", current)
                    continue
                try:
                    self._consumer(current)
                except Exception:
                    logger.exception("Error handling connection event %r", current)
        finally:
            self._draining = False
