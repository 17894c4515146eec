from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Identity:
    """Signed-in participant as returned by the auth service."""

    participant_id: int
    display_name: str
    username: str = ""
