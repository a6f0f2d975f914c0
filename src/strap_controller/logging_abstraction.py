"""Logging abstraction layer for the strap controller.

Wraps stdlib logging with structured context (``extra=``), correlation ids
and two output formats: human-readable lines for consoles and JSON lines for
log shippers. Both can be active at the same time.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

from strap_controller.correlation import get_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "StrapLogger",
    "get_logger",
]

_VALID_FORMATS = ("json", "human", "both")


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        context = _context_of(record)
        if context:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter for console output: ``timestamp level [module:line] [corr] > message | k=v``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"

        formatted = super().format(record)
        context = _context_of(record)
        if context:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            formatted = f"{formatted} | {context_str}"
        return formatted


class StrapLogger:
    """Structured logger with dual-format output.

    Structured context passed through ``extra=`` is carried on the record as
    ``extra_data`` so formatters can render it without colliding with
    LogRecord attribute names.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        """Initialize StrapLogger.

        Args:
            name: Logger name (typically module name)
            log_format: "json", "human" or "both"
            json_file: Path for JSON output (None disables the JSON handler)
            human_output: "stdout", "stderr" or a file path

        """
        from strap_controller.const import STRAP_DEBUG

        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format if log_format in _VALID_FORMATS else "human"
        self.logger.setLevel(logging.DEBUG if STRAP_DEBUG else logging.INFO)

        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        handler_level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(handler_level)
                self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            human_handler = self._human_handler(human_output or "stdout")
            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(handler_level)
            self.logger.addHandler(human_handler)

    @staticmethod
    def _human_handler(output: str) -> logging.Handler:
        if output == "stdout":
            return logging.StreamHandler(sys.stdout)
        if output == "stderr":
            return logging.StreamHandler(sys.stderr)
        try:
            human_path = Path(output)
            human_path.parent.mkdir(parents=True, exist_ok=True)
            return logging.FileHandler(human_path, mode="a")
        except OSError as e:
            print(f"Warning: Failed to create human log file {output}: {e}", file=sys.stderr)
            return logging.StreamHandler(sys.stdout)

    def _log(
        self,
        level: int,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        extra_payload = {"extra_data": dict(extra)} if extra else None
        # stacklevel=3 attributes the record to the caller of debug()/info()/...
        self.logger.log(level, msg, *args, extra=extra_payload, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> StrapLogger:
    """Get a StrapLogger configured from the STRAP_LOG_* environment settings.

    Args:
        name: Logger name
        log_format: Override STRAP_LOG_FORMAT
        json_file: Override STRAP_LOG_JSON_FILE
        human_output: Override STRAP_LOG_HUMAN_OUTPUT

    Returns:
        StrapLogger instance

    """
    from strap_controller.const import (
        STRAP_LOG_FORMAT,
        STRAP_LOG_HUMAN_OUTPUT,
        STRAP_LOG_JSON_FILE,
    )

    return StrapLogger(
        name=name,
        log_format=log_format or STRAP_LOG_FORMAT,
        json_file=json_file or STRAP_LOG_JSON_FILE,
        human_output=human_output or STRAP_LOG_HUMAN_OUTPUT,
    )
