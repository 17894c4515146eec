"""STOMP 1.2 frame codec for text WebSocket messages."""
from __future__ import annotations

from dataclasses import dataclass, field

NULL = "\x00"
EOL = "\n"
HEARTBEAT = EOL

# Frames whose headers are never escaped (STOMP 1.2 §Value Encoding).
_RAW_HEADER_COMMANDS = frozenset({"CONNECT", "CONNECTED"})

_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


class FrameError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        if nxt not in _UNESCAPES:
            raise FrameError(f"Invalid header escape: \\{nxt}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    raw = frame.command in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        if raw:
            lines.append(f"{key}:{value}")
        else:
            lines.append(f"{_escape(key)}:{_escape(value)}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def decode_frame(data: str) -> Frame | None:
    """Decode one frame. Returns None for a heart-beat (bare EOLs)."""
    text = data.lstrip("\r\n")
    if not text:
        return None

    head, sep, rest = text.partition("\n\n")
    if not sep:
        head, sep, rest = text.partition("\r\n\r\n")
    if not sep:
        raise FrameError("Frame has no header terminator")

    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0]
    raw = command in _RAW_HEADER_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, colon, value = line.partition(":")
        if not colon:
            raise FrameError(f"Malformed header line: {line!r}")
        if not raw:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(key, value)

    if "content-length" in headers:
        try:
            length = int(headers["content-length"])
            body = rest.encode("utf-8")[:length].decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise FrameError("Body does not match content-length") from exc
    else:
        body, _, _ = rest.partition(NULL)
    return Frame(command=command, headers=headers, body=body)


def parse_heartbeat(value: str | None) -> tuple[int, int]:
    if not value:
        return 0, 0
    try:
        sx, sy = (int(part) for part in value.split(","))
    except ValueError as exc:
        raise FrameError(f"Invalid heart-beat header: {value!r}") from exc
    return sx, sy


def negotiate_heartbeat(
    client: tuple[int, int], server: tuple[int, int]
) -> tuple[int, int]:
    """Return (outgoing_ms, incoming_ms); 0 disables that direction."""
    cx, cy = client
    sx, sy = server
    outgoing = max(cx, sy) if cx and sy else 0
    incoming = max(cy, sx) if cy and sx else 0
    return outgoing, incoming
