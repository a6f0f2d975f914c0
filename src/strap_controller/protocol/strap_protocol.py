"""Strap protocol encoder/decoder implementation.

Encodes outbound frames and validates inbound frames. Both directions are
pure functions of their inputs; dispatching decoded packets is the session's
job.
"""

from __future__ import annotations

import logging
import struct

from strap_controller.protocol.checksum import crc8, crc32
from strap_controller.protocol.exceptions import PacketEncodeError
from strap_controller.protocol.packet_types import (
    HEADER_SIZE,
    INNER_HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    MIN_FRAME_SIZE,
    START_OF_FRAME,
    TRAILER_SIZE,
    PacketParseError,
    ParsedPacket,
    StrapPacket,
)

logger = logging.getLogger(__name__)

_LENGTH_STRUCT = struct.Struct("<H")
_CRC32_STRUCT = struct.Struct("<I")


def _check_byte(name: str, value: int, payload_size: int) -> None:
    if not 0 <= value <= 0xFF:
        error_reason = f"{name}_out_of_range"
        raise PacketEncodeError(error_reason, payload_size)


class StrapProtocol:
    """Strap frame encoder/decoder.

    Provides static methods for encoding and decoding frames.
    All methods are stateless - no instance state maintained.
    """

    @staticmethod
    def encode_packet(
        packet_type: int,
        sequence: int,
        command_or_event: int,
        payload: bytes = b"",
    ) -> bytes:
        """Encode a complete frame.

        Builds ``inner = [packet_type, sequence, command_or_event] + payload``
        and wraps it as ``0xAA | length LE | crc8(length) | inner | crc32(inner) LE``.

        Args:
            packet_type: Packet type byte (PacketType.COMMAND for outbound commands)
            sequence: Sequence byte (0-255)
            command_or_event: Command, event or metadata number (0-255)
            payload: Payload bytes (at most MAX_PAYLOAD_SIZE)

        Returns:
            Frame bytes ready to write to the command characteristic

        Raises:
            PacketEncodeError: If a header field does not fit a byte or the
                frame length would overflow the u16 length field

        Example:
            >>> from strap_controller.protocol.packet_types import CommandNumber, PacketType
            >>> frame = StrapProtocol.encode_packet(PacketType.COMMAND, 0, CommandNumber.GET_BATTERY_LEVEL)
            >>> len(frame)
            11
            >>> frame[0] == 0xAA
            True

        """
        payload = bytes(payload)
        _check_byte("packet_type", packet_type, len(payload))
        _check_byte("sequence", sequence, len(payload))
        _check_byte("command_or_event", command_or_event, len(payload))
        if len(payload) > MAX_PAYLOAD_SIZE:
            error_reason = "payload_too_large"
            raise PacketEncodeError(error_reason, len(payload))

        inner = bytes([packet_type, sequence, command_or_event]) + payload
        length_bytes = _LENGTH_STRUCT.pack(len(inner) + TRAILER_SIZE)
        frame = (
            bytes([START_OF_FRAME])
            + length_bytes
            + bytes([crc8(length_bytes)])
            + inner
            + _CRC32_STRUCT.pack(crc32(inner))
        )

        logger.debug(
            "Encoded frame: type=0x%02x seq=%d cmd=0x%02x payload=%d bytes",
            packet_type,
            sequence,
            command_or_event,
            len(payload),
        )
        return frame

    @staticmethod
    def decode_packet(data: bytes | bytearray) -> ParsedPacket:
        """Validate a frame and split it into its inner fields.

        Checks run in wire order and stop at the first failure:

        1. Fewer than 8 bytes: TOO_SHORT_FOR_HEADER
        2. First byte not 0xAA: INVALID_START_BYTE
        3. CRC-8 of the length bytes differs from byte 3: HEADER_CRC_MISMATCH
        4. Declared length leaves no room for type/seq/cmd, or exceeds the
           bytes actually present: DECLARED_LENGTH_INCONSISTENT
        5. CRC-32 of the inner bytes differs from the trailer: PAYLOAD_CRC_MISMATCH

        Bytes after the declared frame end are ignored.

        Args:
            data: Raw notification bytes

        Returns:
            ParsedPacket carrying either the StrapPacket or the rejection reason.
            Never raises.

        """
        raw = bytes(data)

        if len(raw) < MIN_FRAME_SIZE:
            return ParsedPacket.invalid(PacketParseError.TOO_SHORT_FOR_HEADER, raw)

        if raw[0] != START_OF_FRAME:
            return ParsedPacket.invalid(PacketParseError.INVALID_START_BYTE, raw)

        if crc8(raw[1:3]) != raw[3]:
            return ParsedPacket.invalid(PacketParseError.HEADER_CRC_MISMATCH, raw)

        (length,) = _LENGTH_STRUCT.unpack_from(raw, 1)
        inner_size = length - TRAILER_SIZE
        if inner_size < INNER_HEADER_SIZE or HEADER_SIZE + length > len(raw):
            logger.debug(
                "Declared length %d inconsistent with %d-byte frame",
                length,
                len(raw),
                extra={"declared_length": length, "frame_size": len(raw)},
            )
            return ParsedPacket.invalid(PacketParseError.DECLARED_LENGTH_INCONSISTENT, raw)

        inner_end = HEADER_SIZE + inner_size
        inner = raw[HEADER_SIZE:inner_end]
        (stored_crc32,) = _CRC32_STRUCT.unpack_from(raw, inner_end)
        if crc32(inner) != stored_crc32:
            return ParsedPacket.invalid(PacketParseError.PAYLOAD_CRC_MISMATCH, raw)

        trailing = len(raw) - (inner_end + TRAILER_SIZE)
        if trailing:
            logger.debug("Ignoring %d bytes after frame end", trailing, extra={"trailing_bytes": trailing})

        packet = StrapPacket(
            packet_type=inner[0],
            sequence=inner[1],
            command_or_event=inner[2],
            payload=inner[INNER_HEADER_SIZE:],
        )
        return ParsedPacket.valid(packet, raw)
