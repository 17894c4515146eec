"""Participant and conversation identifiers.

A direct conversation is addressed by pairing its two participant ids with a
symmetric Cantor pairing, so both sides derive the same topic without asking
the server.
"""
from __future__ import annotations

from typing import NewType

from direct_chat.application.exceptions import ValidationError

ParticipantId = NewType("ParticipantId", int)
ConversationId = NewType("ConversationId", int)

# Largest id whose pairing with any other valid id still fits the service's
# signed 64-bit conversation id.
MAX_PARTICIPANT_ID = 2**31 - 1


def conversation_id(first: int, second: int) -> ConversationId:
    """Return the conversation id shared by ``first`` and ``second``.

    Precondition: both arguments are integers in
    ``[0, MAX_PARTICIPANT_ID]``; use :func:`parse_participant_id` to guard
    untrusted input. Within that range the result fits a signed 64-bit id.
    """
    a = min(first, second)
    b = max(first, second)
    s = a + b
    return ConversationId(s * (s + 1) // 2 + b)


def parse_participant_id(raw: object) -> ParticipantId:
    """Parse form input into a participant id or raise ValidationError."""
    if isinstance(raw, bool):
        raise ValidationError("Participant ID must be a non-negative integer.")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ValidationError("Participant ID is required.")
        try:
            value = int(text)
        except ValueError:
            raise ValidationError("Participant ID must be a non-negative integer.") from None
    else:
        raise ValidationError("Participant ID must be a non-negative integer.")

    if value < 0:
        raise ValidationError("Participant ID must be a non-negative integer.")
    if value > MAX_PARTICIPANT_ID:
        raise ValidationError(f"Participant ID must not exceed {MAX_PARTICIPANT_ID}.")
    return ParticipantId(value)
