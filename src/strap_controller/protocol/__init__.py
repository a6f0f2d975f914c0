"""Strap wire protocol: framing, checksums, command catalog and payload decoders."""

from strap_controller.protocol.checksum import crc8, crc32
from strap_controller.protocol.commands import COMMAND_CATALOG, StrapCommand, build_command
from strap_controller.protocol.exceptions import PacketDecodeError, PacketEncodeError, StrapProtocolError
from strap_controller.protocol.history import (
    HeartRateRecord,
    HistoryMetadata,
    decode_heart_rate_records,
    parse_history_metadata,
)
from strap_controller.protocol.packet_types import (
    CommandNumber,
    EventNumber,
    MetadataType,
    PacketParseError,
    PacketType,
    ParsedPacket,
    StrapPacket,
)
from strap_controller.protocol.strap_protocol import StrapProtocol

__all__ = [
    "COMMAND_CATALOG",
    "CommandNumber",
    "EventNumber",
    "HeartRateRecord",
    "HistoryMetadata",
    "MetadataType",
    "PacketDecodeError",
    "PacketEncodeError",
    "PacketParseError",
    "PacketType",
    "ParsedPacket",
    "StrapCommand",
    "StrapPacket",
    "StrapProtocol",
    "StrapProtocolError",
    "build_command",
    "crc8",
    "crc32",
    "decode_heart_rate_records",
    "parse_history_metadata",
]
