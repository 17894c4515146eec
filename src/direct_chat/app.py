from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from direct_chat.application.ports.bus import BrokerTransport
from direct_chat.config import Settings, settings
from direct_chat.domain.value_objects.enums import BrokerKind
from direct_chat.infrastructure.bus.redis_pubsub import RedisPubSubTransport
from direct_chat.infrastructure.bus.stomp_ws import StompWebSocketTransport
from direct_chat.infrastructure.http.api_client import ChatApiClient
from direct_chat.services.auth_session import AuthSession
from direct_chat.services.chat_session import ChatSession
from direct_chat.services.connection_manager import ConnectionManager
from direct_chat.services.event_channel import EventChannel
from direct_chat.services.history_loader import HistoryLoader
from direct_chat.services.message_stream import ChangeListener, MessageStream

logger = logging.getLogger(__name__)


def build_transport(config: Settings) -> BrokerTransport:
    if config.BROKER_KIND == BrokerKind.REDIS:
        return RedisPubSubTransport(
            config.REDIS_URL,
            heartbeat_ms=config.HEARTBEAT_OUTGOING_MS,
            connect_timeout=config.CONNECT_TIMEOUT_SECONDS,
        )
    return StompWebSocketTransport(
        config.BROKER_URL,
        heartbeat_outgoing_ms=config.HEARTBEAT_OUTGOING_MS,
        heartbeat_incoming_ms=config.HEARTBEAT_INCOMING_MS,
        connect_timeout=config.CONNECT_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def create_client(
    config: Settings = settings,
    *,
    on_change: ChangeListener | None = None,
    http_client: httpx.AsyncClient | None = None,
    transport: BrokerTransport | None = None,
) -> AsyncIterator[ChatSession]:
    """Startup / shutdown lifecycle of one chat client."""
    api = ChatApiClient(
        http_client
        or httpx.AsyncClient(
            base_url=config.API_BASE_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
    )
    connection = ConnectionManager(
        transport or build_transport(config),
        EventChannel(),
        reconnect_delay=config.RECONNECT_DELAY_SECONDS,
    )
    stream = MessageStream(on_change=on_change)
    chat = ChatSession(
        AuthSession(api),
        connection,
        HistoryLoader(api, stream),
        stream,
        topic_template=config.CONVERSATION_TOPIC,
        send_destination=config.SEND_DESTINATION,
    )
    logger.info("Chat client created (api=%s, broker=%s)", config.API_BASE_URL, config.BROKER_KIND)

    try:
        yield chat
    finally:
        await chat.aclose()
        await api.aclose()
        logger.info("Chat client closed")
