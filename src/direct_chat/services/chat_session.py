"""State machine tying identity, peer selection, history and the live stream together.

Every input is a named transition: ``on_identity_changed``,
``on_peer_changed``, ``on_connection_event`` and ``on_history_result``. Each
one recomputes the selected conversation, reconciles the subscription and
derives the current :class:`ChatPhase`. All of them run synchronously on the
event loop; only the history fetch and the transport suspend.
"""
from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError as PydanticValidationError

from direct_chat.application.dto.events import ConnectionEvent
from direct_chat.application.dto.message import OutboundMessageDTO
from direct_chat.application.exceptions import HistoryFetchError, ValidationError
from direct_chat.application.ports.bus import Subscription
from direct_chat.domain.entities.identity import Identity
from direct_chat.domain.entities.message import Message
from direct_chat.domain.value_objects.enums import ChatPhase, ConnectionState
from direct_chat.domain.value_objects.ids import conversation_id as pair_conversation_id
from direct_chat.domain.value_objects.ids import parse_participant_id
from direct_chat.infrastructure.bus.serializer import deserialize_message, serialize_outbound
from direct_chat.services.auth_session import AuthSession
from direct_chat.services.connection_manager import ConnectionManager
from direct_chat.services.history_loader import HistoryLoader
from direct_chat.services.message_stream import MessageStream
from direct_chat.services.subscription_coordinator import DEFAULT_TOPIC, SubscriptionCoordinator

logger = logging.getLogger(__name__)

DEFAULT_SEND_DESTINATION = "/app/chat.send"


class ChatSession:
    def __init__(
        self,
        auth: AuthSession,
        connection: ConnectionManager,
        loader: HistoryLoader,
        stream: MessageStream,
        *,
        topic_template: str = DEFAULT_TOPIC,
        send_destination: str = DEFAULT_SEND_DESTINATION,
    ) -> None:
        self._auth = auth
        self._connection = connection
        self._loader = loader
        self._stream = stream
        self._send_destination = send_destination
        self._coordinator = SubscriptionCoordinator(
            connection.transport, self._on_delivery, topic_template=topic_template,
        )

        self._peer_id: int | None = None
        self._conversation_id: int | None = None
        self._history_task: asyncio.Task[None] | None = None
        self._history_error: str | None = None
        self._phase = ChatPhase.IDLE

        connection.events.bind(self.on_connection_event)

    @property
    def identity(self) -> Identity | None:
        return self._auth.identity

    @property
    def peer_id(self) -> int | None:
        return self._peer_id

    @property
    def conversation_id(self) -> int | None:
        return self._conversation_id

    @property
    def phase(self) -> ChatPhase:
        return self._phase

    @property
    def history_error(self) -> str | None:
        return self._history_error

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def subscription(self) -> Subscription | None:
        return self._coordinator.active

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._stream.messages

    # -- user actions ---------------------------------------------------------

    async def login(self, participant_id: object, password: str) -> Identity:
        identity = await self._auth.login(participant_id, password)
        self.on_identity_changed()
        return identity

    async def register(
        self,
        participant_id: object,
        password: str,
        display_name: str | None = None,
    ) -> Identity:
        identity = await self._auth.register(participant_id, password, display_name)
        self.on_identity_changed()
        return identity

    async def logout(self) -> None:
        self._auth.logout()
        self.on_identity_changed()
        await self._connection.deactivate()

    def select_peer(self, value: object) -> None:
        """Choose the chat partner; ``None`` or a blank string clears the choice."""
        if self._auth.identity is None:
            raise ValidationError("Sign in before choosing a chat partner.")
        if value is None or (isinstance(value, str) and not value.strip()):
            peer = None
        else:
            peer = parse_participant_id(value)
        if peer == self._peer_id:
            return
        self._peer_id = peer
        self.on_peer_changed()

    def send_message(self, content: str) -> OutboundMessageDTO:
        identity = self._auth.identity
        if not content or not content.strip():
            raise ValidationError("Message content is required.")
        if identity is None:
            raise ValidationError("Sign in before sending messages.")
        if self._peer_id is None or self._conversation_id is None:
            raise ValidationError("Choose a chat partner first.")

        dto = OutboundMessageDTO(
            conversation_id=self._conversation_id,
            sender_id=identity.participant_id,
            recipient_id=self._peer_id,
            content=content,
        )
        self._connection.publish(self._send_destination, serialize_outbound(dto))
        return dto

    async def aclose(self) -> None:
        task = self._history_task
        self._cancel_history()
        self._coordinator.teardown()
        self._stream.clear()
        self._conversation_id = None
        self._refresh_phase()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._connection.deactivate()

    # -- transitions ----------------------------------------------------------

    def on_identity_changed(self) -> None:
        self._peer_id = None
        self._switch_conversation(None)
        if self._auth.identity is not None:
            self._connection.activate()

    def on_peer_changed(self) -> None:
        target = self._target_conversation()
        if target == self._conversation_id:
            return
        self._switch_conversation(target)

    def on_connection_event(self, event: ConnectionEvent) -> None:
        logger.debug("Connection event %r (state=%s)", event, self._connection.state)
        self._coordinator.reconcile(self._conversation_id, self._connection.state)
        self._refresh_phase()

    def on_history_result(self, conversation_id: int, error: HistoryFetchError | None) -> None:
        if conversation_id != self._conversation_id:
            return
        self._history_task = None
        self._history_error = error.detail if error is not None else None
        self._refresh_phase()

    # -- internals ------------------------------------------------------------

    def _target_conversation(self) -> int | None:
        identity = self._auth.identity
        if identity is None or self._peer_id is None:
            return None
        return pair_conversation_id(identity.participant_id, self._peer_id)

    def _switch_conversation(self, target: int | None) -> None:
        self._cancel_history()
        self._coordinator.teardown()
        self._conversation_id = target
        self._history_error = None
        self._stream.reset(target)
        if target is not None:
            self._history_task = asyncio.create_task(
                self._load_history(target), name=f"history-{target}",
            )
            logger.info("Switched to conversation %s", target)
        self._coordinator.reconcile(target, self._connection.state)
        self._refresh_phase()

    async def _load_history(self, conversation_id: int) -> None:
        try:
            await self._loader.load(conversation_id)
        except HistoryFetchError as exc:
            logger.warning("History for conversation %s unavailable: %s", conversation_id, exc.detail)
            self.on_history_result(conversation_id, exc)
        except Exception:
            logger.exception("History load error for conversation %s", conversation_id)
            if self._stream.conversation_id == conversation_id:
                self._stream.reset(conversation_id)
            self.on_history_result(conversation_id, HistoryFetchError("History could not be loaded"))
        else:
            self.on_history_result(conversation_id, None)

    def _cancel_history(self) -> None:
        task, self._history_task = self._history_task, None
        if task is not None and not task.done():
            task.cancel()

    def _on_delivery(self, conversation_id: int, body: str) -> None:
        if conversation_id != self._conversation_id:
            return
        try:
            message = deserialize_message(body)
        except PydanticValidationError:
            logger.exception("Dropping malformed message on conversation %s", conversation_id)
            return
        if message.conversation_id != conversation_id:
            logger.warning(
                "Dropping message %s addressed to conversation %s on topic of %s",
                message.id, message.conversation_id, conversation_id,
            )
            return
        self._stream.append(message)

    def _refresh_phase(self) -> None:
        if self._conversation_id is None:
            phase = ChatPhase.IDLE
        elif self._history_task is not None:
            phase = ChatPhase.LOADING_HISTORY
        elif self._history_error is not None:
            phase = ChatPhase.ERRORED
        elif self._coordinator.active is not None:
            phase = ChatPhase.LIVE
        else:
            phase = ChatPhase.SUBSCRIBING
        if phase is not self._phase:
            logger.debug("Chat phase %s -> %s", self._phase, phase)
            self._phase = phase
