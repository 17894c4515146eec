from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8080"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    BROKER_KIND: Literal["stomp", "redis"] = "stomp"
    BROKER_URL: str = "ws://localhost:8080/ws-chat"
    REDIS_URL: str = "redis://localhost:6379/0"

    CONNECT_TIMEOUT_SECONDS: float = 10.0
    RECONNECT_DELAY_SECONDS: float = 5.0
    HEARTBEAT_INCOMING_MS: int = 4000
    HEARTBEAT_OUTGOING_MS: int = 4000

    CONVERSATION_TOPIC: str = "/topic/conversations/{conversation_id}"
    SEND_DESTINATION: str = "/app/chat.send"

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
