import logging
import os
import zoneinfo

import tzlocal

from strap_controller import __version__

__all__ = [
    "CMD_FROM_STRAP_UUID",
    "CMD_TO_STRAP_UUID",
    "DATA_FROM_STRAP_UUID",
    "EVENTS_FROM_STRAP_UUID",
    "LOCAL_TZ",
    "LOG_FORMATTER",
    "MEMFAULT_UUID",
    "STRAP_BOND_SETTLE_MS",
    "STRAP_CONNECT_TIMEOUT",
    "STRAP_DEBUG",
    "STRAP_DISCONNECT_GRACE_MS",
    "STRAP_HANDSHAKE_DELAY_MS",
    "STRAP_HISTORY_BATCH_SIZE",
    "STRAP_INCREMENT_SEQUENCE",
    "STRAP_LOG_FORMAT",
    "STRAP_LOG_HUMAN_OUTPUT",
    "STRAP_LOG_JSON_FILE",
    "STRAP_LOG_NAME",
    "STRAP_METRICS_PORT",
    "STRAP_NAME_FILTER",
    "STRAP_SCAN_TIMEOUT",
    "STRAP_SERVICE_UUID",
    "STRAP_SYNC_LOOKBACK_HOURS",
    "STRAP_SYNC_START_DELAY_MS",
    "STRAP_VERSION",
    "STRAP_WRITE_SETTLE_MS",
    "STRAP_WRITE_TIMEOUT",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on")
LOCAL_TZ = zoneinfo.ZoneInfo(str(tzlocal.get_localzone()))
STRAP_LOG_NAME: str = "strap_controller"
STRAP_VERSION: str = __version__

LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)

# GATT identifiers of the proprietary strap service
STRAP_SERVICE_UUID: str = "61080001-8d6d-82b8-614a-1c8cb0f8dcc6"
CMD_TO_STRAP_UUID: str = "61080002-8d6d-82b8-614a-1c8cb0f8dcc6"
CMD_FROM_STRAP_UUID: str = "61080003-8d6d-82b8-614a-1c8cb0f8dcc6"
EVENTS_FROM_STRAP_UUID: str = "61080004-8d6d-82b8-614a-1c8cb0f8dcc6"
DATA_FROM_STRAP_UUID: str = "61080005-8d6d-82b8-614a-1c8cb0f8dcc6"
MEMFAULT_UUID: str = "61080007-8d6d-82b8-614a-1c8cb0f8dcc6"


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_from_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


STRAP_DEBUG: bool = os.environ.get("STRAP_DEBUG", "0").casefold() in YES_ANSWER
STRAP_LOG_FORMAT: str = os.environ.get("STRAP_LOG_FORMAT", "human").casefold()
_json_file = os.environ.get("STRAP_LOG_JSON_FILE")
STRAP_LOG_JSON_FILE: str | None = _json_file if _json_file else None
STRAP_LOG_HUMAN_OUTPUT: str = os.environ.get("STRAP_LOG_HUMAN_OUTPUT", "stdout")

# Historical sync
STRAP_HISTORY_BATCH_SIZE: int = max(1, _int_from_env("STRAP_HISTORY_BATCH_SIZE", 50))
STRAP_SYNC_LOOKBACK_HOURS: int = _int_from_env("STRAP_SYNC_LOOKBACK_HOURS", 6)

# Session pacing (milliseconds)
STRAP_WRITE_SETTLE_MS: int = _int_from_env("STRAP_WRITE_SETTLE_MS", 50)
STRAP_BOND_SETTLE_MS: int = _int_from_env("STRAP_BOND_SETTLE_MS", 1000)
STRAP_HANDSHAKE_DELAY_MS: int = _int_from_env("STRAP_HANDSHAKE_DELAY_MS", 200)
STRAP_DISCONNECT_GRACE_MS: int = _int_from_env("STRAP_DISCONNECT_GRACE_MS", 500)
STRAP_SYNC_START_DELAY_MS: int = _int_from_env("STRAP_SYNC_START_DELAY_MS", 500)

# Session timeouts (seconds)
STRAP_CONNECT_TIMEOUT: float = _float_from_env("STRAP_CONNECT_TIMEOUT", 20.0)
STRAP_WRITE_TIMEOUT: float = _float_from_env("STRAP_WRITE_TIMEOUT", 5.0)

STRAP_INCREMENT_SEQUENCE: bool = os.environ.get("STRAP_INCREMENT_SEQUENCE", "0").casefold() in YES_ANSWER

# Discovery
STRAP_SCAN_TIMEOUT: float = _float_from_env("STRAP_SCAN_TIMEOUT", 10.0)
STRAP_NAME_FILTER: str = os.environ.get("STRAP_NAME_FILTER", "whoop")

STRAP_METRICS_PORT: int = _int_from_env("STRAP_METRICS_PORT", 9400)
