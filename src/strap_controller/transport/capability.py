"""Capabilities the device session consumes and feeds.

The session never talks to a Bluetooth stack directly. It drives any object
that satisfies ``StrapTransport`` (the bleak adapter in production, mocks in
tests) and hands finished record batches to any ``RecordSink``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from strap_controller.const import (
    CMD_FROM_STRAP_UUID,
    CMD_TO_STRAP_UUID,
    DATA_FROM_STRAP_UUID,
    EVENTS_FROM_STRAP_UUID,
    MEMFAULT_UUID,
)

if TYPE_CHECKING:
    from strap_controller.protocol.history import HeartRateRecord


class LinkEvent(Enum):
    """Link-state change reported by the transport."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_LOST = "connection_lost"


class CharacteristicRole(Enum):
    """Role of each characteristic of the strap service, valued by UUID."""

    CMD_TO_STRAP = CMD_TO_STRAP_UUID
    CMD_FROM_STRAP = CMD_FROM_STRAP_UUID
    EVENTS_FROM_STRAP = EVENTS_FROM_STRAP_UUID
    DATA_FROM_STRAP = DATA_FROM_STRAP_UUID
    MEMFAULT = MEMFAULT_UUID

    @property
    def uuid(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.name.lower()


REQUIRED_ROLES: tuple[CharacteristicRole, ...] = (
    CharacteristicRole.CMD_TO_STRAP,
    CharacteristicRole.CMD_FROM_STRAP,
    CharacteristicRole.EVENTS_FROM_STRAP,
    CharacteristicRole.DATA_FROM_STRAP,
)
OPTIONAL_ROLES: tuple[CharacteristicRole, ...] = (CharacteristicRole.MEMFAULT,)
NOTIFY_ROLES: tuple[CharacteristicRole, ...] = (
    CharacteristicRole.CMD_FROM_STRAP,
    CharacteristicRole.EVENTS_FROM_STRAP,
    CharacteristicRole.DATA_FROM_STRAP,
    CharacteristicRole.MEMFAULT,
)

WRITE_PROPERTIES = frozenset({"write", "write-without-response"})
NOTIFY_PROPERTIES = frozenset({"notify", "indicate"})

NotificationHandler = Callable[[bytes], None]
LinkStateHandler = Callable[[LinkEvent], None]


class GattCharacteristic(Protocol):
    """Structural view of a characteristic handle (bleak's BleakGATTCharacteristic fits)."""

    @property
    def uuid(self) -> str: ...

    @property
    def properties(self) -> list[str]: ...


class GattService(Protocol):
    @property
    def uuid(self) -> str: ...


class StrapTransport(Protocol):
    """Radio-level primitives the session is built on.

    Boolean results report success; ``None`` from the discovery calls means
    "not found". ``subscribe`` raises on failure so per-characteristic errors
    carry their cause. Notification handlers may be invoked from any thread.
    """

    async def connect(self, device_ref: str) -> bool: ...

    async def is_bonded(self, device_ref: str) -> bool: ...

    async def bond(self, device_ref: str) -> bool: ...

    async def discover_service(self, device_ref: str, service_id: str) -> GattService | None: ...

    async def get_characteristic(self, service: GattService, char_id: str) -> GattCharacteristic | None: ...

    async def subscribe(self, characteristic: GattCharacteristic, handler: NotificationHandler) -> None: ...

    async def unsubscribe(self, characteristic: GattCharacteristic) -> None: ...

    async def write(self, characteristic: GattCharacteristic, data: bytes) -> bool: ...

    async def disconnect(self, device_ref: str) -> None: ...

    def set_link_state_handler(self, handler: LinkStateHandler | None) -> None: ...


class RecordSink(Protocol):
    """Consumer of flushed historical record batches (storage, export, ...)."""

    def accept_batch(self, records: Sequence[HeartRateRecord]) -> Awaitable[None] | None: ...


def supports(characteristic: GattCharacteristic, wanted: frozenset[str]) -> bool:
    """True if the characteristic advertises any of the wanted GATT properties."""
    return any(prop.lower() in wanted for prop in characteristic.properties)
