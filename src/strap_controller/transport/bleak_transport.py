"""StrapTransport implementation on top of bleak.

bleak delivers notifications and the disconnect callback on the event loop
that owns the client, so handlers are called directly. Bond state is not
exposed portably by bleak; this adapter reports a strap as bonded once
``pair()`` succeeded on the current client.
"""

from __future__ import annotations

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError

from strap_controller.const import STRAP_CONNECT_TIMEOUT
from strap_controller.logging_abstraction import get_logger
from strap_controller.transport.capability import LinkEvent, LinkStateHandler, NotificationHandler

logger = get_logger(__name__)


class BleakStrapTransport:
    """One bleak client per connect/disconnect cycle."""

    def __init__(self, connect_timeout: float = STRAP_CONNECT_TIMEOUT) -> None:
        self.connect_timeout = connect_timeout
        self._client: BleakClient | None = None
        self._bonded: bool = False
        self._closing: bool = False
        self._link_state_handler: LinkStateHandler | None = None

    @property
    def client(self) -> BleakClient | None:
        return self._client

    def set_link_state_handler(self, handler: LinkStateHandler | None) -> None:
        self._link_state_handler = handler

    def _emit(self, event: LinkEvent) -> None:
        handler = self._link_state_handler
        if handler is not None:
            handler(event)

    def _on_disconnected(self, _client: BleakClient) -> None:
        event = LinkEvent.DISCONNECTED if self._closing else LinkEvent.CONNECTION_LOST
        logger.info("Bleak client disconnected", extra={"event": event.value})
        self._emit(event)

    def _require_client(self) -> BleakClient:
        if self._client is None:
            msg = "Transport is not connected"
            raise BleakError(msg)
        return self._client

    async def connect(self, device_ref: str) -> bool:
        self._closing = False
        self._bonded = False
        self._client = BleakClient(
            device_ref,
            disconnected_callback=self._on_disconnected,
            timeout=self.connect_timeout,
        )
        try:
            await self._client.connect()
        except (BleakError, OSError) as e:
            logger.warning(
                "✗ Bleak connect to %s failed: %s",
                device_ref,
                e,
                extra={"error_type": type(e).__name__},
            )
            return False

        if self._client.is_connected:
            logger.info("✓ Connected to %s", device_ref)
            self._emit(LinkEvent.CONNECTED)
            return True
        return False

    async def is_bonded(self, device_ref: str) -> bool:
        return self._bonded

    async def bond(self, device_ref: str) -> bool:
        client = self._require_client()
        try:
            await client.pair()
        except NotImplementedError:
            # Backends without an explicit pairing API pair on demand
            logger.info("Backend has no explicit pairing, relying on OS pairing")
            return False
        except BleakError as e:
            logger.warning("✗ Pairing with %s failed: %s", device_ref, e)
            return False
        self._bonded = True
        return True

    async def discover_service(self, device_ref: str, service_id: str) -> BleakGATTService | None:
        client = self._require_client()
        return client.services.get_service(service_id)

    async def get_characteristic(self, service: BleakGATTService, char_id: str) -> BleakGATTCharacteristic | None:
        return service.get_characteristic(char_id)

    async def subscribe(self, characteristic: BleakGATTCharacteristic, handler: NotificationHandler) -> None:
        client = self._require_client()
        await client.start_notify(characteristic, lambda _, data: handler(bytes(data)))

    async def unsubscribe(self, characteristic: BleakGATTCharacteristic) -> None:
        client = self._require_client()
        if client.is_connected:
            await client.stop_notify(characteristic)

    async def write(self, characteristic: BleakGATTCharacteristic, data: bytes) -> bool:
        client = self._require_client()
        try:
            await client.write_gatt_char(characteristic, data, response=True)
        except BleakError as e:
            logger.warning(
                "✗ GATT write failed: %s",
                e,
                extra={"characteristic": characteristic.uuid, "size": len(data)},
            )
            return False
        return True

    async def disconnect(self, device_ref: str) -> None:
        client = self._client
        if client is None:
            return
        self._closing = True
        try:
            if client.is_connected:
                await client.disconnect()
        finally:
            self._client = None
            self._bonded = False
