"""Catalog of outbound strap commands.

Each builder returns a ``StrapCommand`` (command number + payload). Builders
hold no state: the session picks the sequence number when it encodes the
command, so the same ``StrapCommand`` can be compared byte-for-byte in tests
and re-sent by callers.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from strap_controller.protocol.packet_types import CommandNumber, PacketType
from strap_controller.protocol.strap_protocol import StrapProtocol

_U32 = struct.Struct("<I")

# SET_CLOCK carries the timestamp followed by zero padding to a 9-byte field
CLOCK_PAYLOAD_SIZE: Final[int] = 9


@dataclass(frozen=True)
class StrapCommand:
    """An outbound command before framing."""

    command: CommandNumber
    payload: bytes = b""

    @property
    def name(self) -> str:
        return self.command.name

    def encode(self, sequence: int = 0) -> bytes:
        """Frame the command as a Command packet with the given sequence byte."""
        return StrapProtocol.encode_packet(PacketType.COMMAND, sequence, self.command, self.payload)


def _unix(value: int | datetime) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def _u32(value: int | datetime) -> bytes:
    return _U32.pack(_unix(value) & 0xFFFFFFFF)


def get_battery_level() -> StrapCommand:
    return StrapCommand(CommandNumber.GET_BATTERY_LEVEL)


def toggle_realtime_hr(enable: bool) -> StrapCommand:
    return StrapCommand(CommandNumber.TOGGLE_REALTIME_HR, b"\x01" if enable else b"\x00")


def report_version_info() -> StrapCommand:
    return StrapCommand(CommandNumber.REPORT_VERSION_INFO)


def set_clock(unix_time: int | datetime) -> StrapCommand:
    """Set the strap RTC. The 4-byte timestamp is zero-padded to CLOCK_PAYLOAD_SIZE."""
    return StrapCommand(CommandNumber.SET_CLOCK, _u32(unix_time).ljust(CLOCK_PAYLOAD_SIZE, b"\x00"))


def get_clock() -> StrapCommand:
    return StrapCommand(CommandNumber.GET_CLOCK)


def set_alarm_time(unix_time: int | datetime) -> StrapCommand:
    return StrapCommand(CommandNumber.SET_ALARM_TIME, _u32(unix_time))


def disable_alarm() -> StrapCommand:
    return StrapCommand(CommandNumber.DISABLE_ALARM, _u32(0))


def run_alarm() -> StrapCommand:
    """Fire the strap's haptic alarm immediately."""
    return StrapCommand(CommandNumber.RUN_ALARM)


def set_read_pointer(unix_time: int | datetime) -> StrapCommand:
    """Position the historical read cursor at a unix timestamp."""
    return StrapCommand(CommandNumber.SET_READ_POINTER, _u32(unix_time))


def send_historical_data(start: bool = True) -> StrapCommand:
    return StrapCommand(CommandNumber.SEND_HISTORICAL_DATA, b"\x01" if start else b"\x00")


def abort_historical_transmits() -> StrapCommand:
    return StrapCommand(CommandNumber.ABORT_HISTORICAL_TRANSMITS)


def historical_data_result(offset: int, start: bool = True) -> StrapCommand:
    """Acknowledge a HistoryEnd metadata packet.

    Payload: 1-byte start flag, the metadata ``data`` value as u32 LE, then
    four zero bytes. The strap continues with the next chunk (or finishes)
    once it receives this.

    Args:
        offset: ``data`` field of the HistoryEnd metadata
        start: Continue transmitting (normal operation)

    """
    payload = (b"\x01" if start else b"\x00") + _U32.pack(offset & 0xFFFFFFFF) + bytes(4)
    return StrapCommand(CommandNumber.HISTORICAL_DATA_RESULT, payload)


def reboot_strap() -> StrapCommand:
    return StrapCommand(CommandNumber.REBOOT_STRAP)


def get_advertising_name() -> StrapCommand:
    return StrapCommand(CommandNumber.GET_ADVERTISING_NAME_HARVARD)


def get_hello() -> StrapCommand:
    return StrapCommand(CommandNumber.GET_HELLO)


def get_data_range() -> StrapCommand:
    return StrapCommand(CommandNumber.GET_DATA_RANGE)


def enter_high_freq_sync() -> StrapCommand:
    return StrapCommand(CommandNumber.ENTER_HIGH_FREQ_SYNC)


def exit_high_freq_sync() -> StrapCommand:
    return StrapCommand(CommandNumber.EXIT_HIGH_FREQ_SYNC)


COMMAND_CATALOG: Final[dict[str, Callable[..., StrapCommand]]] = {
    "battery": get_battery_level,
    "realtime_hr": toggle_realtime_hr,
    "version": report_version_info,
    "set_clock": set_clock,
    "get_clock": get_clock,
    "set_alarm": set_alarm_time,
    "disable_alarm": disable_alarm,
    "run_alarm": run_alarm,
    "set_read_pointer": set_read_pointer,
    "history_start": send_historical_data,
    "history_abort": abort_historical_transmits,
    "history_ack": historical_data_result,
    "reboot": reboot_strap,
    "device_name": get_advertising_name,
    "hello": get_hello,
    "data_range": get_data_range,
    "enter_high_freq_sync": enter_high_freq_sync,
    "exit_high_freq_sync": exit_high_freq_sync,
}


def build_command(name: str, *args: object, **kwargs: object) -> StrapCommand:
    """Build a command by catalog name.

    Raises:
        KeyError: If the name is not in COMMAND_CATALOG

    """
    try:
        builder = COMMAND_CATALOG[name]
    except KeyError:
        msg = f"Unknown command '{name}'. Known: {', '.join(sorted(COMMAND_CATALOG))}"
        raise KeyError(msg) from None
    return builder(*args, **kwargs)
