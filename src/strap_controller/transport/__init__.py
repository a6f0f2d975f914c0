"""Session layer: device session state machine and transport capabilities."""

from strap_controller.transport.capability import (
    CharacteristicRole,
    LinkEvent,
    RecordSink,
    StrapTransport,
)
from strap_controller.transport.device_session import DeviceSession, HistoricalSyncState, SessionState
from strap_controller.transport.exceptions import CharacteristicMissingError, DiscoveryError, StrapSessionError
from strap_controller.transport.timing import SessionTimings

__all__ = [
    "CharacteristicMissingError",
    "CharacteristicRole",
    "DeviceSession",
    "DiscoveryError",
    "HistoricalSyncState",
    "LinkEvent",
    "RecordSink",
    "SessionState",
    "SessionTimings",
    "StrapSessionError",
    "StrapTransport",
]
