from __future__ import annotations

import logging

from direct_chat.application.exceptions import HistoryFetchError
from direct_chat.application.ports.history import HistoryGateway
from direct_chat.services.message_stream import MessageStream

logger = logging.getLogger(__name__)


class HistoryLoader:
    def __init__(self, gateway: HistoryGateway, stream: MessageStream) -> None:
        self._gateway = gateway
        self._stream = stream

    async def load(self, conversation_id: int) -> bool:
        """Fetch the snapshot and install it in the stream.

        Returns False when the conversation was switched away while the
        request was in flight; the result is then discarded. On failure for
        the still-selected conversation the stream is left empty and
        HistoryFetchError propagates.
        """
        try:
            snapshot = await self._gateway.fetch_messages(conversation_id)
        except HistoryFetchError:
            if self._stream.conversation_id != conversation_id:
                logger.debug("Ignoring failed history for stale conversation %s", conversation_id)
                return False
            self._stream.reset(conversation_id)
            raise

        if self._stream.conversation_id != conversation_id:
            logger.debug("Ignoring history for stale conversation %s", conversation_id)
            return False

        self._stream.replace(conversation_id, snapshot)
        logger.debug("Loaded %d messages for conversation %s", len(snapshot), conversation_id)
        return True
