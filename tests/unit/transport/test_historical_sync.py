"""Unit tests for the historical sync protocol.

Tests for:
- SetReadPointer / SendHistoricalData start sequence
- HistoryEnd acknowledgement with HistoricalDataResult
- Batch flushing at the batch size, on completion, abort and disconnect
"""

from __future__ import annotations

import asyncio
import struct
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from strap_controller.protocol import commands
from strap_controller.protocol.packet_types import CommandNumber, MetadataType, PacketType
from strap_controller.transport.capability import CharacteristicRole, LinkEvent
from strap_controller.transport.device_session import SessionState
from strap_controller.transport.timing import SessionTimings
from tests.fixtures.strap_packets import (
    BASE_TIMESTAMP,
    command_response_frame,
    frame,
    history_record,
    historical_data_frame,
    metadata_frame,
)
from tests.helpers.fakes import DEVICE_REF, DeviceSessionTestHarness, FakeStrapTransport

BATCH_SIZE = 50
WINDOW_START = datetime.fromtimestamp(BASE_TIMESTAMP, tz=UTC)


def _flushed_sizes(sink: MagicMock) -> list[int]:
    return [len(call.args[0]) for call in sink.accept_batch.call_args_list]


async def _deliver(session: DeviceSessionTestHarness, transport: FakeStrapTransport, *frames: bytes) -> None:
    for raw in frames:
        transport.notify(CharacteristicRole.DATA_FROM_STRAP, raw)
    await session.wait_for_notifications()


@pytest.mark.unit
class TestStartHistoricalSync:
    @pytest.mark.asyncio
    async def test_sends_read_pointer_then_start(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync(WINDOW_START)

        pointer, start = fake_transport.written_packets
        assert pointer.command == CommandNumber.SET_READ_POINTER
        assert pointer.payload == struct.pack("<I", BASE_TIMESTAMP)
        assert start.command == CommandNumber.SEND_HISTORICAL_DATA
        assert start.payload == b"\x01"
        assert ready_session.sync.active
        assert ready_session.sync.window_start == WINDOW_START

    @pytest.mark.asyncio
    async def test_default_window_looks_back_six_hours(self, ready_session: DeviceSessionTestHarness):
        before = datetime.now(UTC)
        assert await ready_session.start_historical_sync()

        window_start = ready_session.sync.window_start
        assert window_start is not None
        assert timedelta(hours=6) - timedelta(seconds=5) < before - window_start <= timedelta(hours=6)

    @pytest.mark.asyncio
    async def test_accepts_unix_timestamp(self, ready_session: DeviceSessionTestHarness):
        assert await ready_session.start_historical_sync(BASE_TIMESTAMP)
        assert ready_session.sync.window_start == WINDOW_START

    @pytest.mark.asyncio
    async def test_requires_ready_session(self, session: DeviceSessionTestHarness):
        assert await session.start_historical_sync() is False
        assert not session.sync.active

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync()
        assert await ready_session.start_historical_sync() is False
        assert len(fake_transport.writes) == 2

    @pytest.mark.asyncio
    async def test_failed_read_pointer_aborts_attempt(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        fake_transport.write.side_effect = None
        fake_transport.write.return_value = False

        assert await ready_session.start_historical_sync() is False

        assert not ready_session.sync.active
        assert fake_transport.write.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_start_command_clears_active(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        fake_transport.write.side_effect = [True, False]

        assert await ready_session.start_historical_sync() is False
        assert not ready_session.sync.active

    @pytest.mark.asyncio
    async def test_cancelled_start_can_be_retried(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        write_released = asyncio.Event()

        async def _held_write(_characteristic: object, data: bytes) -> bool:
            await write_released.wait()
            fake_transport.writes.append(bytes(data))
            return True

        fake_transport.write.side_effect = _held_write
        starting = asyncio.create_task(ready_session.start_historical_sync(WINDOW_START))
        await asyncio.sleep(0.01)
        assert ready_session.sync.active

        _ = starting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await starting
        assert not ready_session.sync.active

        write_released.set()
        assert await ready_session.start_historical_sync(WINDOW_START)
        assert fake_transport.written_commands == [
            CommandNumber.SET_READ_POINTER,
            CommandNumber.SEND_HISTORICAL_DATA,
        ]


@pytest.mark.unit
class TestHistoryPagination:
    @pytest.mark.asyncio
    async def test_history_end_is_acknowledged_with_its_data(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync()
        fake_transport.writes.clear()

        await _deliver(ready_session, fake_transport, metadata_frame(MetadataType.HISTORY_END, data=32293))

        assert fake_transport.writes == [commands.historical_data_result(32293).encode(0)]
        assert ready_session.sync.last_offset == 32293

    @pytest.mark.asyncio
    async def test_every_history_end_is_acknowledged_in_order(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync()
        fake_transport.writes.clear()

        await _deliver(
            ready_session,
            fake_transport,
            metadata_frame(MetadataType.HISTORY_START),
            historical_data_frame(3),
            metadata_frame(MetadataType.HISTORY_END, data=1),
            metadata_frame(MetadataType.HISTORY_START),
            historical_data_frame(3),
            metadata_frame(MetadataType.HISTORY_END, data=2),
        )

        acks = fake_transport.written_packets
        assert [packet.command for packet in acks] == [CommandNumber.HISTORICAL_DATA_RESULT] * 2
        assert [packet.payload[1:5] for packet in acks] == [struct.pack("<I", 1), struct.pack("<I", 2)]

    @pytest.mark.asyncio
    async def test_history_start_is_not_acknowledged(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync()
        fake_transport.writes.clear()

        await _deliver(ready_session, fake_transport, metadata_frame(MetadataType.HISTORY_START))

        assert fake_transport.writes == []

    @pytest.mark.asyncio
    async def test_short_metadata_is_dropped(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        assert await ready_session.start_historical_sync()
        fake_transport.writes.clear()

        await _deliver(ready_session, fake_transport, frame(PacketType.METADATA, MetadataType.HISTORY_END, bytes(6)))

        assert fake_transport.writes == []
        assert ready_session.sync.active


@pytest.mark.unit
class TestRecordBuffering:
    @pytest.mark.asyncio
    async def test_flushes_at_batch_size(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()

        await _deliver(ready_session, fake_transport, historical_data_frame(30), historical_data_frame(19))
        record_sink.accept_batch.assert_not_called()

        await _deliver(ready_session, fake_transport, historical_data_frame(1, start=BASE_TIMESTAMP + 49))

        assert _flushed_sizes(record_sink) == [BATCH_SIZE]
        assert ready_session.sync.record_buffer == []
        assert ready_session.sync.batches_flushed == 1

    @pytest.mark.asyncio
    async def test_batch_keeps_arrival_order(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()

        await _deliver(
            ready_session,
            fake_transport,
            historical_data_frame(25, start=1000),
            historical_data_frame(25, start=2000),
        )

        (batch,) = record_sink.accept_batch.call_args.args
        assert [r.timestamp for r in batch] == [*range(1000, 1025), *range(2000, 2025)]

    @pytest.mark.asyncio
    async def test_history_complete_flushes_remainder(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()

        await _deliver(
            ready_session,
            fake_transport,
            historical_data_frame(7),
            metadata_frame(MetadataType.HISTORY_COMPLETE),
        )

        assert _flushed_sizes(record_sink) == [7]
        assert not ready_session.sync.active

    @pytest.mark.asyncio
    async def test_discarded_records_are_counted(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
    ):
        payload = history_record(timestamp=1) + history_record(timestamp=2, rr_intervals=(), rr_count=2)
        assert await ready_session.start_historical_sync()

        await _deliver(ready_session, fake_transport, frame(PacketType.HISTORICAL_DATA, 0, payload))

        assert [r.timestamp for r in ready_session.sync.record_buffer] == [1]
        assert ready_session.sync.records_discarded == 1

    @pytest.mark.asyncio
    async def test_async_sink_is_awaited(self, fake_transport: FakeStrapTransport):
        sink = MagicMock()
        sink.accept_batch = AsyncMock()
        session = DeviceSessionTestHarness(
            fake_transport,
            DEVICE_REF,
            sink=sink,
            timings=SessionTimings.immediate(),
            batch_size=10,
        )
        assert await session.connect()
        assert await session.start_historical_sync()

        await _deliver(session, fake_transport, historical_data_frame(10))

        sink.accept_batch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sink_error_does_not_break_session(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        record_sink.accept_batch.side_effect = RuntimeError("database locked")
        assert await ready_session.start_historical_sync()

        await _deliver(ready_session, fake_transport, historical_data_frame(BATCH_SIZE))

        assert ready_session.state == SessionState.READY
        assert ready_session.sync.record_buffer == []


@pytest.mark.unit
class TestSyncTermination:
    @pytest.mark.asyncio
    async def test_abort_sends_command_and_flushes(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()
        await _deliver(ready_session, fake_transport, historical_data_frame(4))
        fake_transport.writes.clear()

        assert await ready_session.abort_historical_sync()

        assert fake_transport.written_commands == [CommandNumber.ABORT_HISTORICAL_TRANSMITS]
        assert _flushed_sizes(record_sink) == [4]
        assert not ready_session.sync.active

    @pytest.mark.asyncio
    async def test_abort_response_flushes(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()
        await _deliver(ready_session, fake_transport, historical_data_frame(3))

        fake_transport.notify(
            CharacteristicRole.CMD_FROM_STRAP,
            command_response_frame(CommandNumber.ABORT_HISTORICAL_TRANSMITS),
        )
        await ready_session.wait_for_notifications()

        assert _flushed_sizes(record_sink) == [3]

    @pytest.mark.asyncio
    async def test_disconnect_flushes_buffer_once(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()
        await _deliver(ready_session, fake_transport, historical_data_frame(12))

        await ready_session.disconnect()
        await ready_session.disconnect()

        assert _flushed_sizes(record_sink) == [12]
        assert not ready_session.sync.active
        assert ready_session.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_link_loss_flushes_without_acknowledging(
        self,
        ready_session: DeviceSessionTestHarness,
        fake_transport: FakeStrapTransport,
        record_sink: MagicMock,
    ):
        assert await ready_session.start_historical_sync()
        fake_transport.writes.clear()

        fake_transport.notify(CharacteristicRole.DATA_FROM_STRAP, historical_data_frame(5))
        fake_transport.notify(CharacteristicRole.DATA_FROM_STRAP, metadata_frame(MetadataType.HISTORY_END, data=9))
        fake_transport.report(LinkEvent.CONNECTION_LOST)
        await ready_session.disconnect()

        assert _flushed_sizes(record_sink) == [5]
        assert fake_transport.writes == []
        assert ready_session.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_no_sink_drops_records_quietly(self, fake_transport: FakeStrapTransport):
        session = DeviceSessionTestHarness(fake_transport, DEVICE_REF, timings=SessionTimings.immediate())
        assert await session.connect()
        assert await session.start_historical_sync()
        await _deliver(session, fake_transport, historical_data_frame(BATCH_SIZE))

        assert session.sync.record_buffer == []
        assert session.sync.batches_flushed == 1
