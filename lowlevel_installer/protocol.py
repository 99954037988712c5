"""Newline-delimited JSON protocol spoken with the installer UI over stdin/stdout.

Inbound:  {"command": "configure", "args": {...}, "id": <optional, echoed>}
Outbound: {"protocol": 1, "status": "ok"|"error"|"progress", ...}

Every inbound message gets exactly one response; progress messages may be
interleaved before it. A line that is not a well-formed message is a
ProtocolError, which ends the session.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, TextIO

from .errors import InstallerError, ProtocolError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1

_REQUEST_KEYS = {"command", "args", "id", "version"}


@dataclass(frozen=True)
class Request:
    command: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: Any = None


def decode_message(line: str) -> Request:
    try:
        raw = json.loads(line)
    except ValueError as e:
        raise ProtocolError(f"Malformed message: {e}") from e

    if not isinstance(raw, dict):
        raise ProtocolError("Message must be a JSON object")

    unknown = sorted(set(raw) - _REQUEST_KEYS)
    if unknown:
        raise ProtocolError(f"Unknown message fields: {', '.join(unknown)}")

    command = raw.get("command")
    if not isinstance(command, str) or not command:
        raise ProtocolError("Message field 'command' must be a non-empty string")

    version = raw.get("version", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise ProtocolError(f"Unsupported protocol version: {version!r} (expected {PROTOCOL_VERSION})")

    args = raw.get("args")
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ProtocolError("Message field 'args' must be an object")

    return Request(command=command, args=args, id=raw.get("id"))


def _envelope(status: str, request: Optional[Request]) -> Dict[str, Any]:
    msg: Dict[str, Any] = {"protocol": PROTOCOL_VERSION, "status": status}
    if request is not None:
        msg["command"] = request.command
        if request.id is not None:
            msg["id"] = request.id
    return msg


def ok_response(request: Request, result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    msg = _envelope("ok", request)
    msg["result"] = result or {}
    return msg


def error_response(
    request: Optional[Request],
    error: InstallerError,
    result: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    msg = _envelope("error", request)
    msg.update(error.to_wire())
    if result:
        msg["result"] = result
    return msg


def progress_message(step: str, ratio: float, text: Optional[str] = None) -> Dict[str, Any]:
    msg = _envelope("progress", None)
    msg["result"] = {"step": step, "ratio": round(min(max(ratio, 0.0), 1.0), 4), "text": text}
    return msg


def encode_message(msg: Dict[str, Any]) -> str:
    return json.dumps(msg, sort_keys=True, ensure_ascii=False, separators=(",", ":")) + "\n"


class MessageReader:
    """Yield requests from a text stream, one per non-blank line."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def __iter__(self) -> Iterator[Request]:
        for line in self.stream:
            if not line.strip():
                continue
            logger.debug("RECV %s", line.rstrip("\n"))
            yield decode_message(line)


class MessageWriter:
    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def send(self, msg: Dict[str, Any]) -> None:
        line = encode_message(msg)
        logger.debug("SEND %s", line.rstrip("\n"))
        self.stream.write(line)
        self.stream.flush()
