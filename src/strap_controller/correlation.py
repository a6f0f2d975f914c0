"""
Correlation ID tracking across async strap operations.

A correlation id ties together every log line emitted while one connect,
historical sync or teardown flow is running, even when those lines come from
the notification router task instead of the caller.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from typing import cast

from uuid_extensions import uuid7

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "strap_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Time-ordered UUIDv7 hex string, so ids sort by creation time in log files
    """
    return cast(uuid.UUID, uuid7()).hex


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """
    Scope a correlation ID and restore the previous one on exit.

    Args:
        correlation_id: Specific correlation ID to use (None to auto-generate)
        auto_generate: Generate a new ID if correlation_id is None

    Yields:
        The correlation ID in effect inside the block

    Example:
        with correlation_context() as corr_id:
            await session.connect()
    """
    previous_id = get_correlation_id()

    if correlation_id is None and auto_generate:
        correlation_id = generate_correlation_id()

    set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        set_correlation_id(previous_id)


def ensure_correlation_id() -> str:
    """
    Return the current correlation ID, generating one if none is set.

    Used at task entry points (router, teardown) that may start outside any
    correlation scope.
    """
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id
