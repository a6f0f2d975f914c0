"""Unit tests for the command catalog."""

from __future__ import annotations

import struct
from datetime import UTC, datetime

import pytest

from strap_controller.protocol import commands
from strap_controller.protocol.commands import COMMAND_CATALOG, StrapCommand, build_command
from strap_controller.protocol.packet_types import CommandNumber, PacketType
from strap_controller.protocol.strap_protocol import StrapProtocol

UNIX_TS = 1736703145


@pytest.mark.unit
class TestStrapCommand:
    def test_encode_produces_command_packet(self):
        frame = commands.get_battery_level().encode()
        packet = StrapProtocol.decode_packet(frame).unwrap()

        assert packet.packet_type == PacketType.COMMAND
        assert packet.sequence == 0
        assert packet.command == CommandNumber.GET_BATTERY_LEVEL
        assert packet.payload == b""

    def test_encode_uses_given_sequence(self):
        frame = commands.get_hello().encode(sequence=9)
        assert StrapProtocol.decode_packet(frame).unwrap().sequence == 9

    def test_name_is_command_name(self):
        assert commands.reboot_strap().name == "REBOOT_STRAP"

    def test_commands_compare_by_value(self):
        assert commands.set_read_pointer(UNIX_TS) == commands.set_read_pointer(UNIX_TS)


@pytest.mark.unit
class TestCommandPayloads:
    @pytest.mark.parametrize(("enable", "expected"), [(True, b"\x01"), (False, b"\x00")])
    def test_toggle_realtime_hr(self, enable: bool, expected: bytes):
        command = commands.toggle_realtime_hr(enable)
        assert command.command == CommandNumber.TOGGLE_REALTIME_HR
        assert command.payload == expected

    def test_set_clock_pads_timestamp_to_nine_bytes(self):
        command = commands.set_clock(UNIX_TS)
        assert command.payload == struct.pack("<I", UNIX_TS) + bytes(5)

    def test_set_clock_accepts_datetime(self):
        when = datetime.fromtimestamp(UNIX_TS, tz=UTC)
        assert commands.set_clock(when) == commands.set_clock(UNIX_TS)

    def test_set_read_pointer(self):
        command = commands.set_read_pointer(datetime.fromtimestamp(UNIX_TS, tz=UTC))
        assert command.command == CommandNumber.SET_READ_POINTER
        assert command.payload == struct.pack("<I", UNIX_TS)

    @pytest.mark.parametrize(("start", "flag"), [(True, b"\x01"), (False, b"\x00")])
    def test_send_historical_data(self, start: bool, flag: bytes):
        assert commands.send_historical_data(start).payload == flag

    def test_historical_data_result(self):
        command = commands.historical_data_result(32293)
        assert command.command == CommandNumber.HISTORICAL_DATA_RESULT
        assert command.payload == b"\x01" + struct.pack("<I", 32293) + bytes(4)

    def test_alarm_commands(self):
        assert commands.set_alarm_time(UNIX_TS).payload == struct.pack("<I", UNIX_TS)
        assert commands.disable_alarm().payload == bytes(4)
        assert commands.run_alarm().payload == b""

    @pytest.mark.parametrize(
        ("builder", "number"),
        [
            (commands.abort_historical_transmits, CommandNumber.ABORT_HISTORICAL_TRANSMITS),
            (commands.get_advertising_name, CommandNumber.GET_ADVERTISING_NAME_HARVARD),
            (commands.enter_high_freq_sync, CommandNumber.ENTER_HIGH_FREQ_SYNC),
            (commands.exit_high_freq_sync, CommandNumber.EXIT_HIGH_FREQ_SYNC),
            (commands.get_data_range, CommandNumber.GET_DATA_RANGE),
            (commands.get_clock, CommandNumber.GET_CLOCK),
            (commands.report_version_info, CommandNumber.REPORT_VERSION_INFO),
        ],
    )
    def test_payloadless_commands(self, builder, number: CommandNumber):
        command = builder()
        assert command.command == number
        assert command.payload == b""


@pytest.mark.unit
class TestCatalog:
    def test_every_entry_builds_a_command(self):
        arguments = {
            "realtime_hr": (True,),
            "set_clock": (UNIX_TS,),
            "set_alarm": (UNIX_TS,),
            "set_read_pointer": (UNIX_TS,),
            "history_ack": (1,),
        }
        for name in COMMAND_CATALOG:
            assert isinstance(build_command(name, *arguments.get(name, ())), StrapCommand)

    def test_build_command_by_name(self):
        assert build_command("history_ack", 5) == commands.historical_data_result(5)

    def test_unknown_name_raises_key_error(self):
        with pytest.raises(KeyError, match="Unknown command"):
            _ = build_command("self_destruct")
