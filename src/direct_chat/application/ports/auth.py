from __future__ import annotations

from typing import Protocol

from direct_chat.application.dto.auth import Credentials, Registration
from direct_chat.domain.entities.identity import Identity


class AuthGateway(Protocol):
    async def login(self, credentials: Credentials) -> Identity: ...

    async def register(self, registration: Registration) -> Identity: ...
