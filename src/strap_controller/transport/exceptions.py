"""Custom exception types for session and transport errors.

Extends the protocol exception hierarchy so ``StrapProtocolError`` catches
everything the package raises.
"""

from __future__ import annotations

from strap_controller.protocol.exceptions import StrapProtocolError


class StrapSessionError(StrapProtocolError):
    """A connect step could not proceed in the session's current state.

    Raised inside ``DeviceSession.connect()`` when the transport refuses the
    link, or when teardown or failure moved the session on while a bring-up
    step was still running. ``connect()`` turns it into a False result;
    rejected sends and sync starts return False instead of raising.

    Attributes:
        reason: Specific failure reason
        state: Session state when the error occurred
    """

    def __init__(self, reason: str, state: str = "unknown"):
        self.reason = reason
        self.state = state
        super().__init__(f"Session error: {reason} (state: {state})")


class DiscoveryError(StrapProtocolError):
    """GATT discovery did not find what the session needs.

    Attributes:
        reason: Specific failure reason
        identifier: UUID that could not be resolved
    """

    def __init__(self, reason: str, identifier: str = ""):
        self.reason = reason
        self.identifier = identifier
        super().__init__(f"Discovery failed: {reason} ({identifier})")


class CharacteristicMissingError(DiscoveryError):
    """A required characteristic is absent or lacks the needed capability.

    Attributes:
        role: Characteristic role name (e.g. "cmd_to_strap")
    """

    def __init__(self, role: str, identifier: str = "", reason: str = "characteristic_missing"):
        self.role = role
        super().__init__(f"{reason}: {role}", identifier)
