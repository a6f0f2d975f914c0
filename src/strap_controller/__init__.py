"""BLE protocol and session layer for wrist-worn biometric straps."""

__version__ = "0.1.0"
