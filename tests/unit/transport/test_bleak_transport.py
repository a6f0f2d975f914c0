"""Unit tests for the bleak transport adapter (BleakClient is mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak.exc import BleakError

from strap_controller.transport.bleak_transport import BleakStrapTransport
from strap_controller.transport.capability import LinkEvent
from tests.helpers.fakes import DEVICE_REF


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.pair = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()
    client.write_gatt_char = AsyncMock()
    client.is_connected = True
    return client


@pytest.fixture
def client_factory(mock_client: MagicMock):
    with patch("strap_controller.transport.bleak_transport.BleakClient", return_value=mock_client) as factory:
        yield factory


@pytest.mark.unit
class TestBleakStrapTransport:
    @pytest.mark.asyncio
    async def test_connect_creates_client_and_reports_link(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport(connect_timeout=3.0)
        events: list[LinkEvent] = []
        transport.set_link_state_handler(events.append)

        assert await transport.connect(DEVICE_REF)

        assert client_factory.call_args.args == (DEVICE_REF,)
        assert client_factory.call_args.kwargs["timeout"] == 3.0
        mock_client.connect.assert_awaited_once()
        assert events == [LinkEvent.CONNECTED]

    @pytest.mark.asyncio
    async def test_connect_error_returns_false(self, client_factory: MagicMock, mock_client: MagicMock):
        mock_client.connect.side_effect = BleakError("device not found")
        assert await BleakStrapTransport().connect(DEVICE_REF) is False

    @pytest.mark.asyncio
    async def test_bond_state_follows_pairing(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)
        assert await transport.is_bonded(DEVICE_REF) is False

        assert await transport.bond(DEVICE_REF)
        assert await transport.is_bonded(DEVICE_REF) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [BleakError("rejected"), NotImplementedError()])
    async def test_pairing_failure(self, client_factory: MagicMock, mock_client: MagicMock, error: Exception):
        mock_client.pair.side_effect = error
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)

        assert await transport.bond(DEVICE_REF) is False
        assert await transport.is_bonded(DEVICE_REF) is False

    @pytest.mark.asyncio
    async def test_discovery_uses_service_collection(self, client_factory: MagicMock, mock_client: MagicMock):
        service = MagicMock()
        characteristic = MagicMock()
        service.get_characteristic.return_value = characteristic
        mock_client.services.get_service.return_value = service
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)

        found = await transport.discover_service(DEVICE_REF, "service-uuid")
        assert found is service
        assert await transport.get_characteristic(found, "char-uuid") is characteristic
        mock_client.services.get_service.assert_called_once_with("service-uuid")
        service.get_characteristic.assert_called_once_with("char-uuid")

    @pytest.mark.asyncio
    async def test_subscribe_forwards_bytes(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)
        received: list[bytes] = []
        characteristic = MagicMock()

        await transport.subscribe(characteristic, received.append)
        bleak_callback = mock_client.start_notify.call_args.args[1]
        bleak_callback(characteristic, bytearray(b"\xaa\x01"))

        assert received == [b"\xaa\x01"]
        assert isinstance(received[0], bytes)

    @pytest.mark.asyncio
    async def test_write_with_response(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)
        characteristic = MagicMock()

        assert await transport.write(characteristic, b"\x01\x02")
        mock_client.write_gatt_char.assert_awaited_once_with(characteristic, b"\x01\x02", response=True)

    @pytest.mark.asyncio
    async def test_write_error_returns_false(self, client_factory: MagicMock, mock_client: MagicMock):
        mock_client.write_gatt_char.side_effect = BleakError("not connected")
        transport = BleakStrapTransport()
        assert await transport.connect(DEVICE_REF)

        assert await transport.write(MagicMock(), b"\x01") is False

    @pytest.mark.asyncio
    async def test_write_without_client_raises(self):
        with pytest.raises(BleakError):
            _ = await BleakStrapTransport().write(MagicMock(), b"\x01")

    @pytest.mark.asyncio
    async def test_requested_disconnect_reports_disconnected(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport()
        events: list[LinkEvent] = []
        transport.set_link_state_handler(events.append)
        assert await transport.connect(DEVICE_REF)
        disconnected_callback = client_factory.call_args.kwargs["disconnected_callback"]

        await transport.disconnect(DEVICE_REF)
        disconnected_callback(mock_client)

        mock_client.disconnect.assert_awaited_once()
        assert events == [LinkEvent.CONNECTED, LinkEvent.DISCONNECTED]
        assert transport.client is None

    @pytest.mark.asyncio
    async def test_unexpected_drop_reports_connection_lost(self, client_factory: MagicMock, mock_client: MagicMock):
        transport = BleakStrapTransport()
        events: list[LinkEvent] = []
        transport.set_link_state_handler(events.append)
        assert await transport.connect(DEVICE_REF)

        client_factory.call_args.kwargs["disconnected_callback"](mock_client)

        assert events[-1] == LinkEvent.CONNECTION_LOST
