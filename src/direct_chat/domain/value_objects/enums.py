from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ChatPhase(StrEnum):
    IDLE = "idle"
    LOADING_HISTORY = "loading_history"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    ERRORED = "errored"


class BrokerKind(StrEnum):
    STOMP = "stomp"
    REDIS = "redis"
