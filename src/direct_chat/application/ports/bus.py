from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

MessageHandler = Callable[[str], None]


class SubscriptionHandle(Protocol):
    @property
    def destination(self) -> str: ...

    def unsubscribe(self) -> None: ...


class BrokerTransport(Protocol):
    """A single publish/subscribe session to the broker.

    ``subscribe``, ``unsubscribe`` and ``publish`` register locally and
    enqueue the wire command, so they never suspend. Once a handle is
    unsubscribed its handler is never called again.
    """

    @property
    def connected(self) -> bool: ...

    async def open(self) -> None:
        """Connect and complete the handshake; raise BrokerConnectionError on failure."""
        ...

    async def run(self) -> None:
        """Pump the session until it ends.

        Returns on a clean close. Raises BrokerConnectionError on a protocol
        error or a missed heartbeat.
        """
        ...

    async def close(self) -> None: ...

    def subscribe(self, destination: str, handler: MessageHandler) -> SubscriptionHandle: ...

    def publish(self, destination: str, body: str) -> None: ...


@dataclass(frozen=True, slots=True)
class Subscription:
    conversation_id: int
    handle: SubscriptionHandle
