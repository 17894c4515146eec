from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Credentials:
    participant_id: int
    password: str


@dataclass(frozen=True, slots=True)
class Registration:
    participant_id: int
    password: str
    display_name: str | None = None
