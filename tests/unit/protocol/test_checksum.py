"""Unit tests for frame checksums."""

from __future__ import annotations

import zlib

import pytest

from strap_controller.protocol.checksum import crc8, crc32

CHECK_INPUT = b"123456789"


@pytest.mark.unit
class TestCrc8:
    def test_standard_check_value(self):
        """CRC-8 poly 0x07, init 0, no reflection, no xorout: check value 0xF4."""
        assert crc8(CHECK_INPUT) == 0xF4

    def test_empty_input_is_zero(self):
        assert crc8(b"") == 0x00

    def test_length_field_of_empty_command(self):
        """Length 7 (0x07 0x00) is the header of every payload-less command."""
        assert crc8(b"\x07\x00") == 0x6B

    def test_accepts_bytearray_and_memoryview(self):
        data = b"\x10\x27"
        assert crc8(bytearray(data)) == crc8(data) == crc8(memoryview(data))

    @pytest.mark.parametrize("bit", range(16))
    def test_detects_every_single_bit_flip_in_length(self, bit: int):
        original = bytearray(b"\x34\x12")
        flipped = bytearray(original)
        flipped[bit // 8] ^= 1 << (bit % 8)
        assert crc8(flipped) != crc8(original)


@pytest.mark.unit
class TestCrc32:
    def test_standard_check_value(self):
        assert crc32(CHECK_INPUT) == 0xCBF43926

    def test_empty_input_is_zero(self):
        assert crc32(b"") == 0

    def test_result_is_unsigned(self):
        data = bytes(range(256))
        assert crc32(data) == zlib.crc32(data) & 0xFFFFFFFF
        assert 0 <= crc32(data) <= 0xFFFFFFFF
