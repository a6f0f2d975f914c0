"""Custom exception types for strap protocol errors.

Decoding itself reports failures as values (see ``ParsedPacket``); these
exceptions are raised where a caller explicitly asks for a valid result
(``ParsedPacket.unwrap``, payload parsers) or hands the encoder values that
cannot be framed.
"""

from __future__ import annotations


class StrapProtocolError(Exception):
    """Base exception for all strap protocol errors.

    Transport and session errors inherit from this class too, so callers can
    catch everything raised by the package with a single handler.
    """


class PacketDecodeError(StrapProtocolError):
    """Packet or payload cannot be decoded.

    Attributes:
        reason: Specific failure reason (e.g., "header_crc_mismatch", "payload_too_short")
        data_preview: First 16 bytes of the offending data
    """

    def __init__(self, reason: str, data: bytes = b""):
        self.reason = reason
        # Only keep a prefix so large historical payloads don't end up in tracebacks
        self.data_preview = bytes(data[:16]) if data else b""
        super().__init__(f"Packet decode failed: {reason}")


class PacketEncodeError(StrapProtocolError):
    """Values cannot be framed (field out of byte range or frame length overflow).

    Attributes:
        reason: Specific failure reason
        payload_size: Size of the payload that was being encoded
    """

    def __init__(self, reason: str, payload_size: int = 0):
        self.reason = reason
        self.payload_size = payload_size
        super().__init__(f"Packet encode failed: {reason} (payload_size: {payload_size})")
