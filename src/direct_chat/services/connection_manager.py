"""Owns the broker session and keeps it connected while it is wanted."""
from __future__ import annotations

import asyncio
import logging

from direct_chat.application.dto.events import Closed, Connected, ConnectionFailed
from direct_chat.application.exceptions import BrokerConnectionError
from direct_chat.application.ports.bus import BrokerTransport
from direct_chat.domain.value_objects.enums import ConnectionState
from direct_chat.services.event_channel import EventChannel

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 5.0


class ConnectionManager:
    """Drives ``disconnected -> connecting -> connected`` and back.

    After a clean close or a failure the session is reopened after
    ``reconnect_delay`` seconds for as long as it stays active. Each
    transition that matters to subscribers is published on ``events``.
    """

    def __init__(
        self,
        transport: BrokerTransport,
        events: EventChannel,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._transport = transport
        self._events = events
        self._reconnect_delay = reconnect_delay
        self._state = ConnectionState.DISCONNECTED
        self._active = False
        self._task: asyncio.Task[None] | None = None
        self._retiring: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> BrokerTransport:
        return self._transport

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def active(self) -> bool:
        return self._active

    def activate(self) -> None:
        if self._active:
            return
        self._active = True
        self._task = asyncio.create_task(self._run(self._retiring), name="broker-connection")
        logger.info("Broker session activated")

    async def deactivate(self) -> None:
        """Stop reconnecting and close the transport. Publishes no events.

        A session activated while this shutdown is still running opens only
        after the shutdown has closed the transport.
        """
        task, self._task = self._task, None
        self._active = False
        self._state = ConnectionState.DISCONNECTED
        retiring = asyncio.create_task(self._shutdown(task, self._retiring), name="broker-shutdown")
        self._retiring = retiring
        await retiring

    async def _shutdown(
        self,
        task: asyncio.Task[None] | None,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        if task is not None:
            task.cancel()
            await asyncio.wait([task])
        await self._transport.close()
        if task is not None:
            logger.info("Broker session deactivated")

    def publish(self, destination: str, body: str) -> None:
        if self._state is not ConnectionState.CONNECTED:
            raise BrokerConnectionError(f"Cannot send while {self._state}")
        self._transport.publish(destination, body)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection state %s -> %s", self._state, state)
            self._state = state

    async def _run(self, retiring: asyncio.Task[None] | None) -> None:
        if retiring is not None and not retiring.done():
            await asyncio.wait([retiring])
        while self._active:
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._transport.open()
                self._set_state(ConnectionState.CONNECTED)
                self._events.publish(Connected())
                await self._transport.run()
            except BrokerConnectionError as exc:
                logger.warning("Broker connection failed: %s", exc.detail)
                self._fail(exc.detail)
            except Exception as exc:
                logger.exception("Broker session loop error")
                self._fail(str(exc) or type(exc).__name__)
            else:
                logger.info("Broker session closed")
                self._set_state(ConnectionState.DISCONNECTED)
                self._events.publish(Closed())

            await self._transport.close()
            logger.info("Reconnecting in %.1fs", self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)

    def _fail(self, reason: str) -> None:
        self._set_state(ConnectionState.ERROR)
        self._events.publish(ConnectionFailed(reason=reason))
