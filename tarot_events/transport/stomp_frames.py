"""Transport layer: STOMP 1.2 text frame encoding/decoding over WebSocket messages."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

NULL = "\x00"
EOL = "\n"

# CONNECT/CONNECTED headers are sent verbatim; every other frame escapes them.
_UNESCAPED_COMMANDS = {"CONNECT", "CONNECTED"}
_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}
_HEADER_END = re.compile(r"\r?\n\r?\n")


class StompProtocolError(RuntimeError):
    """Raised when the peer sends bytes that are not a well-formed STOMP frame."""


@dataclass(frozen=True)
class StompFrame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    def encode(self) -> str:
        lines = [self.command]
        escape = self.command not in _UNESCAPED_COMMANDS
        headers = dict(self.headers)
        if self.body and "content-length" not in headers:
            headers["content-length"] = str(len(self.body.encode("utf-8")))
        for key, value in headers.items():
            if escape:
                key, value = _escape(key), _escape(value)
            lines.append(f"{key}:{value}")
        return EOL.join(lines) + EOL + EOL + self.body + NULL


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(value):
        char = value[index]
        if char != "\\":
            out.append(char)
            index += 1
            continue
        pair = value[index : index + 2]
        if pair not in _UNESCAPES:
            raise StompProtocolError(f"invalid header escape: {pair!r}")
        out.append(_UNESCAPES[pair])
        index += 2
    return "".join(out)


def _decode_one(chunk: str) -> StompFrame:
    match = _HEADER_END.search(chunk)
    if match is None:
        raise StompProtocolError("frame is missing the header terminator")
    head, body = chunk[: match.start()], chunk[match.end() :]
    lines = [line.rstrip("\r") for line in head.split(EOL)]
    command = lines[0].strip()
    if not command:
        raise StompProtocolError("frame is missing a command")
    escape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        key, colon, value = line.partition(":")
        if not colon:
            raise StompProtocolError(f"malformed header line: {line!r}")
        if escape:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(key, value)
    return StompFrame(command=command, headers=headers, body=body)


def decode_frames(data: str | bytes) -> list[StompFrame]:
    """Split one WebSocket message into frames; bare EOL heart-beats are skipped."""
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    frames: list[StompFrame] = []
    for chunk in text.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        frames.append(_decode_one(chunk))
    return frames


def connect_frame(host: str) -> StompFrame:
    return StompFrame(
        "CONNECT",
        {"accept-version": "1.2,1.1", "host": host, "heart-beat": "0,0"},
    )


def subscribe_frame(subscription_id: str, destination: str) -> StompFrame:
    return StompFrame("SUBSCRIBE", {"id": subscription_id, "destination": destination, "ack": "auto"})


def send_frame(destination: str, body: str, headers: dict[str, str] | None = None) -> StompFrame:
    merged = {"destination": destination, "content-type": "application/json"}
    merged.update(headers or {})
    return StompFrame("SEND", merged, body)


def disconnect_frame(receipt: str) -> StompFrame:
    return StompFrame("DISCONNECT", {"receipt": receipt})
