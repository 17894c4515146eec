"""Keeps at most one live subscription, bound to the selected conversation."""
from __future__ import annotations

import logging
from typing import Callable

from direct_chat.application.exceptions import BrokerConnectionError
from direct_chat.application.ports.bus import BrokerTransport, Subscription
from direct_chat.domain.value_objects.enums import ConnectionState

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "/topic/conversations/{conversation_id}"

DeliveryCallback = Callable[[int, str], None]


class SubscriptionCoordinator:
    def __init__(
        self,
        transport: BrokerTransport,
        on_delivery: DeliveryCallback,
        *,
        topic_template: str = DEFAULT_TOPIC,
    ) -> None:
        self._transport = transport
        self._on_delivery = on_delivery
        self._topic_template = topic_template
        self._subscription: Subscription | None = None

    @property
    def active(self) -> Subscription | None:
        return self._subscription

    def topic_for(self, conversation_id: int) -> str:
        return self._topic_template.format(conversation_id=conversation_id)

    def reconcile(self, conversation_id: int | None, state: ConnectionState) -> None:
        """Make the live subscription match ``conversation_id`` under ``state``.

        Any mismatching subscription is dropped before a replacement is
        requested, so two subscriptions never coexist.
        """
        current = self._subscription
        if current is not None and (
            current.conversation_id != conversation_id or state is not ConnectionState.CONNECTED
        ):
            self.teardown()

        if (
            self._subscription is None
            and conversation_id is not None
            and state is ConnectionState.CONNECTED
        ):
            topic = self.topic_for(conversation_id)
            try:
                handle = self._transport.subscribe(topic, lambda body: self._deliver(conversation_id, body))
            except BrokerConnectionError as exc:
                # Session is unwinding; the next Connected event resubscribes.
                logger.warning("Cannot subscribe to %s yet: %s", topic, exc.detail)
                return
            self._subscription = Subscription(conversation_id=conversation_id, handle=handle)
            logger.info("Subscribed to %s", topic)

    def teardown(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        subscription.handle.unsubscribe()
        logger.info("Unsubscribed from %s", subscription.handle.destination)

    def _deliver(self, conversation_id: int, body: str) -> None:
        current = self._subscription
        if current is None or current.conversation_id != conversation_id:
            logger.debug("Discarding delivery for stale conversation %s", conversation_id)
            return
        self._on_delivery(conversation_id, body)
