"""
Checksums used by strap frames.

- CRC-8 (polynomial 0x07, MSB-first, init 0x00, no final XOR) protects the
  2-byte little-endian length field of every frame header.
- CRC-32/IEEE-802.3 (reflected polynomial 0xEDB88320, init 0xFFFFFFFF,
  complemented result) protects the inner packet. This is the same CRC that
  zlib computes, so the stdlib implementation is used directly.
"""

from __future__ import annotations

import zlib
from typing import Final

CRC8_POLYNOMIAL: Final[int] = 0x07


def _build_crc8_table(polynomial: int) -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = ((crc << 1) ^ polynomial) if crc & 0x80 else (crc << 1)
            crc &= 0xFF
        table.append(crc)
    return tuple(table)


_CRC8_TABLE: Final[tuple[int, ...]] = _build_crc8_table(CRC8_POLYNOMIAL)


def crc8(data: bytes | bytearray | memoryview) -> int:
    """
    Compute the frame header CRC-8.

    Args:
        data: Bytes to checksum (normally the 2 length bytes)

    Returns:
        The checksum (0-255)
    """
    crc = 0
    for b in bytes(data):
        crc = _CRC8_TABLE[crc ^ b]
    return crc


def crc32(data: bytes | bytearray | memoryview) -> int:
    """
    Compute the frame trailer CRC-32 over the inner packet bytes.

    Returns:
        Unsigned 32-bit checksum
    """
    return zlib.crc32(bytes(data)) & 0xFFFFFFFF
