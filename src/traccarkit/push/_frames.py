"""
Decoding of push-channel frames.

The server sends JSON objects tagged by their top-level key:

    {"devices": [...]}      device updates
    {"positions": [...]}    new positions
    {"events": [...]}       server events
    {}                      keep-alive

`decode_frame()` tries each known shape in a fixed priority order and falls
through to `PushMessageKind.UNKNOWN` when nothing matches, so a malformed or
unrecognized frame never raises.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from traccarkit._models import Device, Event, Position

logger = logging.getLogger(__name__)


class PushMessageKind(StrEnum):
    """Kind of a decoded push frame."""

    DEVICES = "devices"
    POSITIONS = "positions"
    EVENTS = "events"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PushMessage:
    """
    A decoded push frame.

    Attributes:
        kind: Which stream the frame belongs to.
        devices: Decoded devices (DEVICES frames only).
        positions: Decoded positions (POSITIONS frames only).
        events: Decoded events (EVENTS frames only).
        raw: The parsed JSON payload, or None when the frame was not valid JSON.
    """

    kind: PushMessageKind
    devices: list[Device] = field(default_factory=list)
    positions: list[Position] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    raw: Any = None

    @property
    def is_unknown(self) -> bool:
        return self.kind == PushMessageKind.UNKNOWN


def _decode_devices(payload: dict[str, Any]) -> PushMessage | None:
    items = payload.get("devices")
    if not isinstance(items, list):
        return None
    return PushMessage(PushMessageKind.DEVICES, devices=[Device.from_json(i) for i in items], raw=payload)


def _decode_device(payload: dict[str, Any]) -> PushMessage | None:
    item = payload.get("device")
    if not isinstance(item, dict):
        return None
    return PushMessage(PushMessageKind.DEVICES, devices=[Device.from_json(item)], raw=payload)


def _decode_positions(payload: dict[str, Any]) -> PushMessage | None:
    items = payload.get("positions")
    if not isinstance(items, list):
        return None
    return PushMessage(PushMessageKind.POSITIONS, positions=[Position.from_json(i) for i in items], raw=payload)


def _decode_events(payload: dict[str, Any]) -> PushMessage | None:
    items = payload.get("events")
    if not isinstance(items, list):
        return None
    return PushMessage(PushMessageKind.EVENTS, events=[Event.from_json(i) for i in items], raw=payload)


# Priority order matters: the first decoder that succeeds wins.
_DECODERS: tuple[tuple[str, Callable[[dict[str, Any]], PushMessage | None]], ...] = (
    ("devices", _decode_devices),
    ("device", _decode_device),
    ("positions", _decode_positions),
    ("events", _decode_events),
)


def decode_frame(frame: str | bytes) -> PushMessage:
    """
    Decode a raw text frame into a `PushMessage`.

    Args:
        frame: The frame as received from the socket.

    Returns:
        The first shape that decodes cleanly, or an UNKNOWN message.
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")

    try:
        payload = json.loads(frame)
    except ValueError:
        logger.debug(f"Push frame is not valid JSON, ignoring: {frame[:100]!r}")
        return PushMessage(PushMessageKind.UNKNOWN)

    if not isinstance(payload, dict):
        return PushMessage(PushMessageKind.UNKNOWN, raw=payload)

    for name, decoder in _DECODERS:
        if name not in payload:
            continue
        try:
            message = decoder(payload)
        except (TypeError, ValueError, KeyError) as e:
            logger.debug(f"Push frame `{name}` payload is malformed, trying next shape: {e}")
            continue
        if message is not None:
            return message

    return PushMessage(PushMessageKind.UNKNOWN, raw=payload)
