"""Pacing and timeout configuration for device sessions.

BLE stacks misbehave when writes overlap or arrive right after bonding, so
the session waits between radio operations. Defaults come from the
STRAP_*_MS / STRAP_*_TIMEOUT environment settings; tests pass zeros.
"""

from __future__ import annotations

from strap_controller.const import (
    STRAP_BOND_SETTLE_MS,
    STRAP_CONNECT_TIMEOUT,
    STRAP_DISCONNECT_GRACE_MS,
    STRAP_HANDSHAKE_DELAY_MS,
    STRAP_SYNC_START_DELAY_MS,
    STRAP_WRITE_SETTLE_MS,
    STRAP_WRITE_TIMEOUT,
)


class SessionTimings:
    """Delays (seconds) applied by the session between radio operations."""

    def __init__(
        self,
        write_settle_seconds: float = STRAP_WRITE_SETTLE_MS / 1000.0,
        bond_settle_seconds: float = STRAP_BOND_SETTLE_MS / 1000.0,
        handshake_delay_seconds: float = STRAP_HANDSHAKE_DELAY_MS / 1000.0,
        disconnect_grace_seconds: float = STRAP_DISCONNECT_GRACE_MS / 1000.0,
        sync_start_delay_seconds: float = STRAP_SYNC_START_DELAY_MS / 1000.0,
        connect_timeout_seconds: float = STRAP_CONNECT_TIMEOUT,
        write_timeout_seconds: float = STRAP_WRITE_TIMEOUT,
    ):
        """Initialize session timings.

        Args:
            write_settle_seconds: Pause after every command write, inside the write lock
            bond_settle_seconds: Wait after bonding before re-polling bond state
            handshake_delay_seconds: Pause between handshake commands
            disconnect_grace_seconds: Pause after each farewell command on disconnect
            sync_start_delay_seconds: Pause between SetReadPointer and SendHistoricalData
            connect_timeout_seconds: Upper bound for transport connect and bond calls
            write_timeout_seconds: Upper bound for a single characteristic write
        """
        self.write_settle_seconds = write_settle_seconds
        self.bond_settle_seconds = bond_settle_seconds
        self.handshake_delay_seconds = handshake_delay_seconds
        self.disconnect_grace_seconds = disconnect_grace_seconds
        self.sync_start_delay_seconds = sync_start_delay_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.write_timeout_seconds = write_timeout_seconds

    @classmethod
    def immediate(cls) -> SessionTimings:
        """No pacing at all (keeps generous timeouts); for tests and simulators."""
        return cls(
            write_settle_seconds=0.0,
            bond_settle_seconds=0.0,
            handshake_delay_seconds=0.0,
            disconnect_grace_seconds=0.0,
            sync_start_delay_seconds=0.0,
        )

    def __repr__(self) -> str:
        return (
            f"SessionTimings(write_settle={self.write_settle_seconds:.3f}s, "
            f"bond_settle={self.bond_settle_seconds:.3f}s, "
            f"handshake_delay={self.handshake_delay_seconds:.3f}s, "
            f"disconnect_grace={self.disconnect_grace_seconds:.3f}s, "
            f"sync_start_delay={self.sync_start_delay_seconds:.3f}s, "
            f"connect_timeout={self.connect_timeout_seconds:.1f}s, "
            f"write_timeout={self.write_timeout_seconds:.1f}s)"
        )
