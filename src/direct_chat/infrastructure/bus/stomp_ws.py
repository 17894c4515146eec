"""STOMP 1.2 over WebSocket broker session."""
from __future__ import annotations

import asyncio
import itertools
import logging
from urllib.parse import urlparse

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from direct_chat.application.exceptions import BrokerConnectionError
from direct_chat.application.ports.bus import MessageHandler
from direct_chat.infrastructure.bus.stomp_frames import (
    HEARTBEAT,
    Frame,
    FrameError,
    decode_frame,
    encode_frame,
    negotiate_heartbeat,
    parse_heartbeat,
)

logger = logging.getLogger(__name__)

STOMP_SUBPROTOCOLS = ["v12.stomp", "v11.stomp", "v10.stomp"]


class StompSubscription:
    def __init__(self, transport: StompWebSocketTransport, sub_id: str, destination: str) -> None:
        self._transport = transport
        self._id = sub_id
        self._destination = destination

    @property
    def id(self) -> str:
        return self._id

    @property
    def destination(self) -> str:
        return self._destination

    def unsubscribe(self) -> None:
        self._transport._unsubscribe(self._id)


class StompWebSocketTransport:
    """Implements application.ports.bus.BrokerTransport."""

    def __init__(
        self,
        url: str,
        *,
        heartbeat_outgoing_ms: int = 4000,
        heartbeat_incoming_ms: int = 4000,
        connect_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._client_heartbeat = (heartbeat_outgoing_ms, heartbeat_incoming_ms)
        self._connect_timeout = connect_timeout
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._handlers: dict[str, MessageHandler] = {}
        self._ids = itertools.count()
        self._outgoing_ms = 0
        self._incoming_ms = 0
        self._last_received = 0.0

    @property
    def connected(self) -> bool:
        return self._outbox is not None

    async def open(self) -> None:
        try:
            ws = await connect(
                self._url,
                subprotocols=STOMP_SUBPROTOCOLS,
                open_timeout=self._connect_timeout,
                ping_interval=None,
            )
        except (OSError, WebSocketException) as exc:
            raise BrokerConnectionError(f"Cannot reach broker at {self._url}: {exc}") from exc

        try:
            frame = await self._handshake(ws)
        except BrokerConnectionError:
            await ws.close()
            raise

        self._outgoing_ms, self._incoming_ms = negotiate_heartbeat(
            self._client_heartbeat, parse_heartbeat(frame.headers.get("heart-beat")),
        )
        self._ws = ws
        self._outbox = asyncio.Queue()
        self._last_received = asyncio.get_running_loop().time()
        logger.info(
            "STOMP session open (version=%s, heart-beat out=%dms in=%dms)",
            frame.headers.get("version", "1.0"), self._outgoing_ms, self._incoming_ms,
        )

    async def _handshake(self, ws: ClientConnection) -> Frame:
        out_ms, in_ms = self._client_heartbeat
        connect_frame = Frame(
            "CONNECT",
            {
                "accept-version": "1.2,1.1,1.0",
                "host": urlparse(self._url).hostname or "localhost",
                "heart-beat": f"{out_ms},{in_ms}",
            },
        )
        try:
            await ws.send(encode_frame(connect_frame))
            async with asyncio.timeout(self._connect_timeout):
                while True:
                    raw = await ws.recv()
                    frame = decode_frame(raw if isinstance(raw, str) else raw.decode("utf-8"))
                    if frame is not None:
                        break
        except (OSError, TimeoutError, WebSocketException, FrameError) as exc:
            raise BrokerConnectionError(f"STOMP handshake failed: {exc}") from exc

        if frame.command == "ERROR":
            raise BrokerConnectionError(frame.headers.get("message") or frame.body or "Broker refused connection")
        if frame.command != "CONNECTED":
            raise BrokerConnectionError(f"Unexpected {frame.command} frame during handshake")
        return frame

    async def run(self) -> None:
        ws = self._ws
        outbox = self._outbox
        if ws is None or outbox is None:
            raise BrokerConnectionError("STOMP session is not open")

        tasks = [
            asyncio.create_task(self._read_loop(ws), name="stomp-reader"),
            asyncio.create_task(self._write_loop(ws, outbox), name="stomp-writer"),
        ]
        if self._incoming_ms:
            tasks.append(asyncio.create_task(self._watchdog(), name="stomp-heartbeat-watchdog"))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._outbox = None
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            task.result()

    async def _read_loop(self, ws: ClientConnection) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                raw = await ws.recv()
            except ConnectionClosedOK:
                logger.info("Broker closed the STOMP session")
                return
            except WebSocketException as exc:
                raise BrokerConnectionError(f"Connection lost: {exc}") from exc

            self._last_received = loop.time()
            try:
                frame = decode_frame(raw if isinstance(raw, str) else raw.decode("utf-8"))
            except (FrameError, UnicodeDecodeError):
                logger.warning("Discarding undecodable frame from broker", exc_info=True)
                continue
            if frame is None:
                continue

            if frame.command == "MESSAGE":
                self._dispatch(frame)
            elif frame.command == "ERROR":
                raise BrokerConnectionError(frame.headers.get("message") or frame.body or "Broker error")
            else:
                logger.debug("Ignoring %s frame", frame.command)

    async def _write_loop(self, ws: ClientConnection, outbox: asyncio.Queue[str]) -> None:
        interval = self._outgoing_ms / 1000 if self._outgoing_ms else None
        while True:
            try:
                data = await asyncio.wait_for(outbox.get(), timeout=interval)
            except TimeoutError:
                data = HEARTBEAT
            try:
                await ws.send(data)
            except ConnectionClosedOK:
                return
            except WebSocketException as exc:
                raise BrokerConnectionError(f"Connection lost: {exc}") from exc

    async def _watchdog(self) -> None:
        loop = asyncio.get_running_loop()
        ttl = self._incoming_ms / 1000 * 2
        while True:
            await asyncio.sleep(self._incoming_ms / 1000)
            if loop.time() - self._last_received > ttl:
                raise BrokerConnectionError(f"No heart-beat from broker for {ttl:.1f}s")

    def _dispatch(self, frame: Frame) -> None:
        sub_id = frame.headers.get("subscription", "")
        handler = self._handlers.get(sub_id)
        if handler is None:
            logger.debug("Dropping MESSAGE for inactive subscription %s", sub_id)
            return
        try:
            handler(frame.body)
        except Exception:
            logger.exception("Error processing broker message on %s", frame.headers.get("destination"))

    def subscribe(self, destination: str, handler: MessageHandler) -> StompSubscription:
        if not self.connected:
            raise BrokerConnectionError("Cannot subscribe while disconnected")
        sub_id = f"sub-{next(self._ids)}"
        self._handlers[sub_id] = handler
        self._send(Frame("SUBSCRIBE", {"id": sub_id, "destination": destination, "ack": "auto"}))
        logger.debug("Subscribed %s to %s", sub_id, destination)
        return StompSubscription(self, sub_id, destination)

    def _unsubscribe(self, sub_id: str) -> None:
        if self._handlers.pop(sub_id, None) is None:
            return
        if self.connected:
            self._send(Frame("UNSUBSCRIBE", {"id": sub_id}))
        logger.debug("Unsubscribed %s", sub_id)

    def publish(self, destination: str, body: str) -> None:
        if not self.connected:
            raise BrokerConnectionError("Cannot publish while disconnected")
        self._send(
            Frame(
                "SEND",
                {
                    "destination": destination,
                    "content-type": "application/json",
                    "content-length": str(len(body.encode("utf-8"))),
                },
                body,
            )
        )

    def _send(self, frame: Frame) -> None:
        if self._outbox is None:
            raise BrokerConnectionError("STOMP session is not open")
        self._outbox.put_nowait(encode_frame(frame))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        self._outbox = None
        self._handlers.clear()
        if ws is None:
            return
        try:
            await ws.send(encode_frame(Frame("DISCONNECT")))
        except (OSError, WebSocketException):
            logger.debug("DISCONNECT not delivered", exc_info=True)
        await ws.close()
