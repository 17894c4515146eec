"""HTTP client for the chat service's auth and history endpoints."""
from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from direct_chat.application.dto.auth import Credentials, Registration
from direct_chat.application.exceptions import AuthError, HistoryFetchError
from direct_chat.domain.entities.identity import Identity
from direct_chat.domain.entities.message import Message
from direct_chat.infrastructure.http.mappers import login_to_identity, view_to_entity
from direct_chat.infrastructure.http.schemas import (
    LoginRequest,
    LoginResponse,
    MessageView,
    RegisterRequest,
)

logger = logging.getLogger(__name__)

_message_list = TypeAdapter(list[MessageView])

DEFAULT_AUTH_ERROR = "Unable to authenticate."


class ChatApiClient:
    """Implements application.ports.auth.AuthGateway and history.HistoryGateway."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def login(self, credentials: Credentials) -> Identity:
        body = LoginRequest(
            participant_id=credentials.participant_id,
            password=credentials.password,
        )
        return await self._authenticate("/api/auth/login", body)

    async def register(self, registration: Registration) -> Identity:
        body = RegisterRequest(
            participant_id=registration.participant_id,
            password=registration.password,
            display_name=registration.display_name or None,
        )
        return await self._authenticate("/api/auth/register", body)

    async def fetch_messages(self, conversation_id: int) -> list[Message]:
        url = f"/api/conversations/{conversation_id}/messages"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise HistoryFetchError(f"History request failed: {exc}") from exc

        if not resp.is_success:
            raise HistoryFetchError(f"History request failed with status {resp.status_code}")

        try:
            views = _message_list.validate_json(resp.content)
        except PydanticValidationError as exc:
            raise HistoryFetchError("History response is malformed") from exc

        return [view_to_entity(v) for v in views]

    async def _authenticate(self, path: str, body: BaseModel) -> Identity:
        payload = body.model_dump(by_alias=True, exclude_none=True)
        try:
            resp = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            logger.debug("Auth request to %s failed", path, exc_info=True)
            raise AuthError(str(exc) or DEFAULT_AUTH_ERROR) from exc

        if not resp.is_success:
            raise AuthError(resp.text.strip() or DEFAULT_AUTH_ERROR)

        try:
            data = LoginResponse.model_validate_json(resp.content)
        except PydanticValidationError as exc:
            raise AuthError(DEFAULT_AUTH_ERROR) from exc
        return login_to_identity(data)

    async def aclose(self) -> None:
        await self._client.aclose()
