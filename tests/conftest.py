"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
import pytest_asyncio

from direct_chat.application.dto.auth import Credentials, Registration
from direct_chat.application.exceptions import AuthError, BrokerConnectionError, HistoryFetchError
from direct_chat.domain.entities.identity import Identity
from direct_chat.domain.entities.message import Message
from direct_chat.services.auth_session import AuthSession
from direct_chat.services.chat_session import ChatSession
from direct_chat.services.connection_manager import ConnectionManager
from direct_chat.services.event_channel import EventChannel
from direct_chat.services.history_loader import HistoryLoader
from direct_chat.services.message_stream import MessageStream

_BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_message(
    *,
    message_id: int,
    conversation_id: int = 41,
    sender_id: int = 3,
    content: str = "hello",
    minutes: int = 0,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_name=f"User {sender_id}",
        content=content,
        sent_at=_BASE_TIME + timedelta(minutes=minutes),
    )


def message_json(message: Message) -> str:
    return json.dumps(
        {
            "id": message.id,
            "conversationId": message.conversation_id,
            "senderId": message.sender_id,
            "senderName": message.sender_name,
            "content": message.content,
            "sentAt": message.sent_at.isoformat(),
        }
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@dataclass
class FakeHandle:
    transport: FakeTransport
    sub_id: int
    destination: str

    def unsubscribe(self) -> None:
        self.transport.unsubscribe(self.sub_id)


@dataclass
class FakeTransport:
    """In-memory BrokerTransport; the test decides when a session ends."""

    connected: bool = False
    open_errors: list[BrokerConnectionError] = field(default_factory=list)
    handlers: dict[int, tuple[str, Callable[[str], None]]] = field(default_factory=dict)
    published: list[tuple[str, str]] = field(default_factory=list)
    log: list[tuple[str, str]] = field(default_factory=list)
    open_calls: int = 0
    close_calls: int = 0
    _ids: Any = field(default_factory=itertools.count)
    _session: asyncio.Future[None] | None = None

    async def open(self) -> None:
        self.open_calls += 1
        if self.open_errors:
            raise self.open_errors.pop(0)
        self.connected = True
        self._session = asyncio.get_running_loop().create_future()

    async def run(self) -> None:
        assert self._session is not None
        try:
            await self._session
        finally:
            self.connected = False

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False
        self.handlers.clear()

    def subscribe(self, destination: str, handler: Callable[[str], None]) -> FakeHandle:
        if not self.connected:
            raise BrokerConnectionError("Cannot subscribe while disconnected")
        sub_id = next(self._ids)
        self.handlers[sub_id] = (destination, handler)
        self.log.append(("subscribe", destination))
        return FakeHandle(self, sub_id, destination)

    def unsubscribe(self, sub_id: int) -> None:
        entry = self.handlers.pop(sub_id, None)
        if entry is not None:
            self.log.append(("unsubscribe", entry[0]))

    def publish(self, destination: str, body: str) -> None:
        if not self.connected:
            raise BrokerConnectionError("Cannot publish while disconnected")
        self.published.append((destination, body))

    # -- test controls --

    def end_session(self, error: BrokerConnectionError | None = None) -> None:
        assert self._session is not None and not self._session.done()
        if error is None:
            self._session.set_result(None)
        else:
            self._session.set_exception(error)

    def deliver(self, destination: str, body: str) -> None:
        for dest, handler in list(self.handlers.values()):
            if dest == destination:
                handler(body)

    @property
    def destinations(self) -> list[str]:
        return [dest for dest, _ in self.handlers.values()]


@dataclass
class FakeChatApi:
    """AuthGateway + HistoryGateway backed by dicts."""

    passwords: dict[int, str] = field(default_factory=dict)
    identities: dict[int, Identity] = field(default_factory=dict)
    histories: dict[int, list[Message]] = field(default_factory=dict)
    failing: set[int] = field(default_factory=set)
    crashing: set[int] = field(default_factory=set)
    gates: dict[int, asyncio.Event] = field(default_factory=dict)
    login_gate: asyncio.Event | None = None
    fetch_calls: list[int] = field(default_factory=list)
    auth_calls: int = 0

    def add_user(self, participant_id: int, password: str, display_name: str) -> Identity:
        identity = Identity(participant_id, display_name, f"user_{participant_id}")
        self.passwords[participant_id] = password
        self.identities[participant_id] = identity
        return identity

    async def login(self, credentials: Credentials) -> Identity:
        self.auth_calls += 1
        if self.login_gate is not None:
            await self.login_gate.wait()
        if self.passwords.get(credentials.participant_id) != credentials.password:
            raise AuthError("Invalid credentials")
        return self.identities[credentials.participant_id]

    async def register(self, registration: Registration) -> Identity:
        self.auth_calls += 1
        pid = registration.participant_id
        if pid in self.passwords:
            raise AuthError(f"User {pid} already exists")
        return self.add_user(pid, registration.password, registration.display_name or f"User {pid}")

    async def fetch_messages(self, conversation_id: int) -> list[Message]:
        self.fetch_calls.append(conversation_id)
        gate = self.gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        if conversation_id in self.crashing:
            raise RuntimeError("gateway bug")
        if conversation_id in self.failing:
            raise HistoryFetchError("History request failed with status 500")
        return list(self.histories.get(conversation_id, []))


@pytest.fixture
def api() -> FakeChatApi:
    fake = FakeChatApi()
    fake.add_user(3, "secret", "Alice")
    fake.add_user(5, "hunter2", "Bob")
    return fake


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def stream() -> MessageStream:
    return MessageStream()


@pytest_asyncio.fixture
async def make_chat(api, transport, stream):
    """Factory for a wired ChatSession; every session is closed after the test."""
    sessions: list[ChatSession] = []

    def _make(*, reconnect_delay: float = 0.01) -> ChatSession:
        connection = ConnectionManager(transport, EventChannel(), reconnect_delay=reconnect_delay)
        chat = ChatSession(AuthSession(api), connection, HistoryLoader(api, stream), stream)
        sessions.append(chat)
        return chat

    yield _make

    for chat in sessions:
        await chat.aclose()
