"""Metrics module."""

from . import registry
from .registry import (
    record_command_sent,
    record_decode_error,
    record_frame_received,
    record_history_flush,
    record_session_state,
    start_metrics_server,
)

__all__ = [
    "record_command_sent",
    "record_decode_error",
    "record_frame_received",
    "record_history_flush",
    "record_session_state",
    "registry",
    "start_metrics_server",
]
