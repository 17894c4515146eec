"""Signed-in identity across login, registration and logout."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from direct_chat.application.dto.auth import Credentials, Registration
from direct_chat.application.exceptions import AuthError, ValidationError
from direct_chat.application.ports.auth import AuthGateway
from direct_chat.domain.entities.identity import Identity
from direct_chat.domain.value_objects.ids import ParticipantId, parse_participant_id

logger = logging.getLogger(__name__)


def _validate(participant_id: object, password: str) -> ParticipantId:
    if participant_id in (None, "") or not password:
        raise ValidationError("Participant ID and password are required.")
    return parse_participant_id(participant_id)


class AuthSession:
    def __init__(self, gateway: AuthGateway) -> None:
        self._gateway = gateway
        self._identity: Identity | None = None
        self._submitting = False
        # Bumped on logout so a sign-in that resolves afterwards is dropped.
        self._generation = 0

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def submitting(self) -> bool:
        return self._submitting

    async def login(self, participant_id: object, password: str) -> Identity:
        credentials = Credentials(
            participant_id=_validate(participant_id, password),
            password=password,
        )
        return await self._submit(lambda: self._gateway.login(credentials))

    async def register(
        self,
        participant_id: object,
        password: str,
        display_name: str | None = None,
    ) -> Identity:
        registration = Registration(
            participant_id=_validate(participant_id, password),
            password=password,
            display_name=(display_name or "").strip() or None,
        )
        return await self._submit(lambda: self._gateway.register(registration))

    def logout(self) -> Identity | None:
        previous, self._identity = self._identity, None
        self._generation += 1
        if previous is not None:
            logger.info("Participant %s signed out", previous.participant_id)
        return previous

    async def _submit(self, call: Callable[[], Awaitable[Identity]]) -> Identity:
        if self._submitting:
            raise ValidationError("A sign-in request is already in progress.")
        self._submitting = True
        generation = self._generation
        try:
            identity = await call()
        finally:
            self._submitting = False

        if generation != self._generation:
            raise AuthError("Sign-in was cancelled.")
        self._identity = identity
        logger.info("Participant %s signed in as %r", identity.participant_id, identity.display_name)
        return identity
