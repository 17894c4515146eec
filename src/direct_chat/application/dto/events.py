"""Connection lifecycle notifications."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Connected:
    pass


@dataclass(frozen=True, slots=True)
class Closed:
    pass


@dataclass(frozen=True, slots=True)
class ConnectionFailed:
    reason: str


ConnectionEvent = Connected | Closed | ConnectionFailed
