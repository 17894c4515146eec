"""STOMP transport against an in-process websockets broker."""
from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.server import ServerConnection, serve

from direct_chat.application.exceptions import BrokerConnectionError
from direct_chat.infrastructure.bus.stomp_frames import Frame, decode_frame, encode_frame
from direct_chat.infrastructure.bus.stomp_ws import StompWebSocketTransport


class FakeBroker:
    """Minimal STOMP broker: routes /app/chat.send to the conversation topic."""

    def __init__(self, *, heart_beat: str = "0,0", refuse: str | None = None) -> None:
        self.heart_beat = heart_beat
        self.refuse = refuse
        self.frames: list[Frame] = []
        self.subscriptions: dict[str, str] = {}
        self.connection: ServerConnection | None = None
        self.connected = asyncio.Event()
        self._message_ids = 0

    async def handler(self, ws: ServerConnection) -> None:
        self.connection = ws
        async for raw in ws:
            frame = decode_frame(raw)
            if frame is None:
                continue
            self.frames.append(frame)
            await self._handle(ws, frame)

    async def _handle(self, ws: ServerConnection, frame: Frame) -> None:
        if frame.command == "CONNECT":
            if self.refuse:
                await ws.send(encode_frame(Frame("ERROR", {"message": self.refuse})))
                await ws.close()
                return
            await ws.send(encode_frame(Frame("CONNECTED", {"version": "1.2", "heart-beat": self.heart_beat})))
            self.connected.set()
        elif frame.command == "SUBSCRIBE":
            self.subscriptions[frame.headers["id"]] = frame.headers["destination"]
        elif frame.command == "UNSUBSCRIBE":
            self.subscriptions.pop(frame.headers["id"], None)
        elif frame.command == "SEND":
            cid = json.loads(frame.body)["conversationId"]
            await self.broadcast(f"/topic/conversations/{cid}", frame.body)
        elif frame.command == "DISCONNECT":
            await ws.close()

    async def broadcast(self, destination: str, body: str) -> None:
        for sub_id, dest in list(self.subscriptions.items()):
            if dest == destination:
                await self.push(sub_id, destination, body)

    async def push(self, sub_id: str, destination: str, body: str) -> None:
        self._message_ids += 1
        headers = {"subscription": sub_id, "destination": destination, "message-id": str(self._message_ids)}
        await self.connection.send(encode_frame(Frame("MESSAGE", headers, body)))


async def _start(broker: FakeBroker):
    server = await serve(broker.handler, "127.0.0.1", 0, subprotocols=["v12.stomp"])
    port = server.sockets[0].getsockname()[1]
    return server, f"ws://127.0.0.1:{port}/ws-chat"


@pytest_asyncio.fixture
async def broker_url():
    broker = FakeBroker()
    server, url = await _start(broker)
    yield broker, url
    server.close()
    await server.wait_closed()


async def _until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_handshake_subscribe_and_receive(broker_url):
    broker, url = broker_url
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=0, heartbeat_incoming_ms=0)
    received: list[str] = []

    await transport.open()
    run = asyncio.create_task(transport.run())
    assert transport.connected is True

    transport.subscribe("/topic/conversations/41", received.append)
    transport.publish("/app/chat.send", json.dumps({"conversationId": 41, "senderId": 3, "content": "hi"}))
    await _until(lambda: received)

    assert json.loads(received[0])["content"] == "hi"
    connect = broker.frames[0]
    assert connect.command == "CONNECT"
    assert connect.headers["accept-version"] == "1.2,1.1,1.0"
    assert connect.headers["host"] == "127.0.0.1"
    send = next(f for f in broker.frames if f.command == "SEND")
    assert send.headers["destination"] == "/app/chat.send"

    await transport.close()
    await asyncio.wait_for(run, timeout=2)


@pytest.mark.asyncio
async def test_unsubscribed_handler_receives_nothing(broker_url):
    broker, url = broker_url
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=0, heartbeat_incoming_ms=0)
    old: list[str] = []
    new: list[str] = []
    await transport.open()
    run = asyncio.create_task(transport.run())

    handle = transport.subscribe("/topic/conversations/41", old.append)
    await _until(lambda: len(broker.subscriptions) == 1)
    (old_id,) = broker.subscriptions
    handle.unsubscribe()
    transport.subscribe("/topic/conversations/62", new.append)
    await _until(lambda: list(broker.subscriptions.values()) == ["/topic/conversations/62"])

    await broker.push(old_id, "/topic/conversations/41", "stale")
    await broker.broadcast("/topic/conversations/62", "fresh")
    await _until(lambda: new)

    assert new == ["fresh"]
    assert old == []
    await transport.close()
    await asyncio.wait_for(run, timeout=2)


@pytest.mark.asyncio
async def test_broker_close_ends_run_cleanly(broker_url):
    broker, url = broker_url
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=0, heartbeat_incoming_ms=0)
    await transport.open()
    run = asyncio.create_task(transport.run())
    await broker.connected.wait()

    await broker.connection.close()

    await asyncio.wait_for(run, timeout=2)
    assert transport.connected is False
    await transport.close()


@pytest.mark.asyncio
async def test_error_frame_fails_run(broker_url):
    broker, url = broker_url
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=0, heartbeat_incoming_ms=0)
    await transport.open()
    run = asyncio.create_task(transport.run())
    await broker.connected.wait()

    await broker.connection.send(encode_frame(Frame("ERROR", {"message": "Destination forbidden"})))

    with pytest.raises(BrokerConnectionError, match="Destination forbidden"):
        await asyncio.wait_for(run, timeout=2)
    await transport.close()


@pytest.mark.asyncio
async def test_refused_connect():
    broker = FakeBroker(refuse="Bad credentials")
    server, url = await _start(broker)
    transport = StompWebSocketTransport(url)

    with pytest.raises(BrokerConnectionError, match="Bad credentials"):
        await transport.open()

    assert transport.connected is False
    server.close()
    await server.wait_closed()


@pytest.mark.asyncio
async def test_silent_broker_trips_heartbeat_watchdog():
    broker = FakeBroker(heart_beat="100,100")
    server, url = await _start(broker)
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=100, heartbeat_incoming_ms=100)
    await transport.open()

    with pytest.raises(BrokerConnectionError, match="No heart-beat"):
        await asyncio.wait_for(transport.run(), timeout=3)

    await transport.close()
    server.close()
    await server.wait_closed()


@pytest.mark.asyncio
async def test_unreachable_broker():
    transport = StompWebSocketTransport("ws://127.0.0.1:1/ws-chat", connect_timeout=1.0)

    with pytest.raises(BrokerConnectionError, match="Cannot reach broker"):
        await transport.open()


@pytest.mark.asyncio
async def test_subscribe_before_open_is_rejected():
    transport = StompWebSocketTransport("ws://127.0.0.1:1/ws-chat")

    with pytest.raises(BrokerConnectionError):
        transport.subscribe("/topic/conversations/41", lambda body: None)


@pytest.mark.asyncio
async def test_unsubscribe_after_close_sends_nothing(broker_url):
    broker, url = broker_url
    transport = StompWebSocketTransport(url, heartbeat_outgoing_ms=0, heartbeat_incoming_ms=0)
    await transport.open()
    run = asyncio.create_task(transport.run())
    handle = transport.subscribe("/topic/conversations/41", lambda body: None)

    await transport.close()
    await asyncio.wait_for(run, timeout=2)
    handle.unsubscribe()

    with pytest.raises(BrokerConnectionError, match="not open"):
        transport._send(Frame("UNSUBSCRIBE", {"id": "sub-0"}))
