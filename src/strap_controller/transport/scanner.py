"""Find straps that are advertising nearby."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from strap_controller.const import STRAP_NAME_FILTER, STRAP_SCAN_TIMEOUT, STRAP_SERVICE_UUID
from strap_controller.logging_abstraction import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DiscoveredStrap:
    address: str
    name: str | None
    rssi: int | None


def matches_strap(device: BLEDevice, adv: AdvertisementData, name_filter: str = STRAP_NAME_FILTER) -> bool:
    """True if the advertisement names a strap or carries the strap service UUID.

    The name check is a case-insensitive substring match ("WHOOP 4A0934182").
    """
    name = device.name or adv.local_name
    if name_filter and name and name_filter.casefold() in name.casefold():
        return True

    uuids: Iterable[str] = adv.service_uuids or []
    return any(uuid.lower() == STRAP_SERVICE_UUID for uuid in uuids)


async def discover_straps(
    timeout: float = STRAP_SCAN_TIMEOUT,
    name_filter: str = STRAP_NAME_FILTER,
) -> list[DiscoveredStrap]:
    """Scan for ``timeout`` seconds and return matching straps, strongest signal first.

    Raises:
        RuntimeError: If the Bluetooth adapter cannot be used for scanning
    """
    logger.info("→ Scanning for straps", extra={"timeout": timeout, "name_filter": name_filter})
    try:
        found = await BleakScanner.discover(timeout=timeout, return_adv=True)
    except BleakError as e:
        msg = "BLE scan failed; check that Bluetooth is enabled and the adapter is available"
        raise RuntimeError(msg) from e

    straps = [
        DiscoveredStrap(address=device.address, name=device.name or adv.local_name, rssi=adv.rssi)
        for device, adv in found.values()
        if matches_strap(device, adv, name_filter)
    ]
    straps.sort(key=lambda strap: strap.rssi if strap.rssi is not None else -1000, reverse=True)
    logger.info("✓ Scan finished: %d strap(s) found", len(straps), extra={"seen": len(found)})
    return straps
