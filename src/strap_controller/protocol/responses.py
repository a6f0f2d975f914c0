"""Parsers for command-response, event and realtime payloads."""

from __future__ import annotations

import struct

from strap_controller.protocol.exceptions import PacketDecodeError

_BATTERY_OFFSET = 2
_CLOCK_OFFSET = 2
_REALTIME_HR_OFFSET = 5
_U32 = struct.Struct("<I")


def _require(payload: bytes, size: int, reason: str) -> None:
    if len(payload) < size:
        raise PacketDecodeError(reason, payload)


def parse_battery_level(payload: bytes) -> int:
    """Battery percentage from a GET_BATTERY_LEVEL response or BATTERY_LEVEL event."""
    _require(payload, _BATTERY_OFFSET + 1, "battery_payload_too_short")
    return payload[_BATTERY_OFFSET]


def parse_clock(payload: bytes) -> int:
    """Strap RTC (unix seconds) from a GET_CLOCK response."""
    _require(payload, _CLOCK_OFFSET + _U32.size, "clock_payload_too_short")
    (unix,) = _U32.unpack_from(payload, _CLOCK_OFFSET)
    return unix


def parse_realtime_heart_rate(payload: bytes) -> int:
    """Whole-beat heart rate from a REALTIME_DATA payload."""
    _require(payload, _REALTIME_HR_OFFSET + 1, "realtime_payload_too_short")
    return payload[_REALTIME_HR_OFFSET]


def parse_console_text(payload: bytes) -> str:
    """Text carried by ERROR / CONSOLE_OUTPUT events and console log packets."""
    return payload.replace(b"\x00", b"").decode("ascii", errors="replace").strip()
