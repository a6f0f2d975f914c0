"""Strap protocol packet type definitions and dataclass structures.

Frame layout (all multi-byte integers little-endian)::

    byte 0      : 0xAA start-of-frame
    bytes 1-2   : length = len(inner) + 4
    byte 3      : CRC-8 over bytes 1-2
    bytes 4..   : inner = [packet_type, sequence, command_or_event, *payload]
    last 4 bytes: CRC-32 over inner

``command_or_event`` is read against ``CommandNumber`` for Command and
CommandResponse packets, ``EventNumber`` for Event packets and
``MetadataType`` for Metadata packets. Values outside those catalogs are kept
as plain ints; the wire format is only partially documented and new firmware
adds numbers regularly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Final, TypeVar

from strap_controller.protocol.exceptions import PacketDecodeError

START_OF_FRAME: Final[int] = 0xAA
HEADER_SIZE: Final[int] = 4  # SOF + length (2) + CRC-8
TRAILER_SIZE: Final[int] = 4  # CRC-32
MIN_FRAME_SIZE: Final[int] = HEADER_SIZE + TRAILER_SIZE
INNER_HEADER_SIZE: Final[int] = 3  # packet_type + sequence + command_or_event
MAX_DECLARED_LENGTH: Final[int] = 0xFFFF
MAX_PAYLOAD_SIZE: Final[int] = MAX_DECLARED_LENGTH - TRAILER_SIZE - INNER_HEADER_SIZE


class PacketType(IntEnum):
    COMMAND = 0x23
    COMMAND_RESPONSE = 0x24
    REALTIME_DATA = 0x28
    REALTIME_RAW_DATA = 0x2B
    HISTORICAL_DATA = 0x2F
    EVENT = 0x30
    METADATA = 0x31
    CONSOLE_LOGS = 0x32


class MetadataType(IntEnum):
    HISTORY_START = 1
    HISTORY_END = 2
    HISTORY_COMPLETE = 3


class CommandNumber(IntEnum):
    LINK_VALID = 0x01
    GET_MAX_PROTOCOL_VERSION = 0x02
    TOGGLE_REALTIME_HR = 0x03
    REPORT_VERSION_INFO = 0x07
    SET_CLOCK = 0x0A
    GET_CLOCK = 0x0B
    TOGGLE_GENERIC_HR_PROFILE = 0x0E
    ABORT_HISTORICAL_TRANSMITS = 0x14
    SEND_HISTORICAL_DATA = 0x16
    HISTORICAL_DATA_RESULT = 0x17
    GET_BATTERY_LEVEL = 0x1A
    REBOOT_STRAP = 0x1D
    SET_READ_POINTER = 0x21
    GET_DATA_RANGE = 0x22
    GET_HELLO_HARVARD = 0x23
    SET_ALARM_TIME = 0x42
    GET_ALARM_TIME = 0x43
    RUN_ALARM = 0x44
    DISABLE_ALARM = 0x45
    GET_ADVERTISING_NAME_HARVARD = 0x4C
    ENTER_HIGH_FREQ_SYNC = 0x60
    EXIT_HIGH_FREQ_SYNC = 0x61
    GET_EXTENDED_BATTERY_INFO = 0x62
    GET_HELLO = 0x91


class EventNumber(IntEnum):
    UNDEFINED = 0x00
    ERROR = 0x01
    CONSOLE_OUTPUT = 0x02
    BATTERY_LEVEL = 0x03
    SYSTEM_CONTROL = 0x04
    EXTERNAL_5V_ON = 0x05
    EXTERNAL_5V_OFF = 0x06
    CHARGING_ON = 0x07
    CHARGING_OFF = 0x08
    WRIST_ON = 0x09
    WRIST_OFF = 0x0A
    BLE_CONNECTION_UP = 0x0B
    BLE_CONNECTION_DOWN = 0x0C
    RTC_LOST = 0x0D
    DOUBLE_TAP = 0x0E
    BOOT = 0x0F
    SET_RTC = 0x10
    TEMPERATURE_LEVEL = 0x11
    PAIRING_MODE = 0x12
    BLE_BONDED = 0x17
    STRAP_DRIVEN_ALARM_SET = 0x38
    STRAP_DRIVEN_ALARM_EXECUTED = 0x39
    APP_DRIVEN_ALARM_EXECUTED = 0x3A
    STRAP_DRIVEN_ALARM_DISABLED = 0x3B
    HAPTICS_FIRED = 0x3C
    HIGH_FREQ_SYNC_PROMPT = 0x60
    HIGH_FREQ_SYNC_ENABLED = 0x61
    HIGH_FREQ_SYNC_DISABLED = 0x62
    HAPTICS_TERMINATED = 0x64


class PacketParseError(Enum):
    """Reason a frame was rejected by the decoder."""

    TOO_SHORT_FOR_HEADER = "too_short_for_header"
    INVALID_START_BYTE = "invalid_start_byte"
    HEADER_CRC_MISMATCH = "header_crc_mismatch"
    DECLARED_LENGTH_INCONSISTENT = "declared_length_inconsistent"
    PAYLOAD_CRC_MISMATCH = "payload_crc_mismatch"


E = TypeVar("E", bound=IntEnum)


def _enum_or_none(enum_cls: type[E], value: int) -> E | None:
    try:
        return enum_cls(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class StrapPacket:
    """Inner packet of a validated frame.

    Attributes:
        packet_type: Packet type byte (see PacketType)
        sequence: Sequence byte
        command_or_event: Command, event or metadata number
        payload: Bytes following the three inner header bytes

    """

    packet_type: int
    sequence: int
    command_or_event: int
    payload: bytes = b""

    @property
    def kind(self) -> PacketType | None:
        return _enum_or_none(PacketType, self.packet_type)

    @property
    def command(self) -> CommandNumber | None:
        if self.packet_type not in (PacketType.COMMAND, PacketType.COMMAND_RESPONSE):
            return None
        return _enum_or_none(CommandNumber, self.command_or_event)

    @property
    def event(self) -> EventNumber | None:
        if self.packet_type != PacketType.EVENT:
            return None
        return _enum_or_none(EventNumber, self.command_or_event)

    @property
    def metadata_type(self) -> MetadataType | None:
        if self.packet_type != PacketType.METADATA:
            return None
        return _enum_or_none(MetadataType, self.command_or_event)

    @property
    def type_name(self) -> str:
        kind = self.kind
        return kind.name.lower() if kind is not None else f"0x{self.packet_type:02x}"

    @property
    def subject_name(self) -> str:
        """Name of the command, event or metadata number for logs."""
        for subject in (self.command, self.event, self.metadata_type):
            if subject is not None:
                return subject.name
        return f"0x{self.command_or_event:02x}"


@dataclass(frozen=True)
class ParsedPacket:
    """Decoder result: a valid ``StrapPacket`` or the reason the frame was rejected."""

    packet: StrapPacket | None = None
    error: PacketParseError | None = None
    raw: bytes = field(default=b"", repr=False)

    @property
    def is_valid(self) -> bool:
        return self.packet is not None and self.error is None

    def unwrap(self) -> StrapPacket:
        """Return the packet or raise PacketDecodeError with the rejection reason."""
        if self.packet is None or self.error is not None:
            reason = self.error.value if self.error is not None else "no_packet"
            raise PacketDecodeError(reason, self.raw)
        return self.packet

    @classmethod
    def valid(cls, packet: StrapPacket, raw: bytes = b"") -> ParsedPacket:
        return cls(packet=packet, error=None, raw=raw)

    @classmethod
    def invalid(cls, error: PacketParseError, raw: bytes = b"") -> ParsedPacket:
        return cls(packet=None, error=error, raw=raw)
