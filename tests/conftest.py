"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing strap sessions against an
in-memory transport.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from strap_controller.transport.timing import SessionTimings
from tests.helpers.fakes import DEVICE_REF, DeviceSessionTestHarness, FakeStrapTransport


@pytest.fixture
def fake_transport() -> FakeStrapTransport:
    return FakeStrapTransport()


@pytest.fixture
def record_sink() -> MagicMock:
    """Synchronous RecordSink capturing each flushed batch."""
    sink = MagicMock()
    sink.accept_batch = MagicMock(return_value=None)
    return sink


@pytest.fixture
def session(fake_transport: FakeStrapTransport, record_sink: MagicMock) -> DeviceSessionTestHarness:
    return DeviceSessionTestHarness(
        fake_transport,
        DEVICE_REF,
        sink=record_sink,
        timings=SessionTimings.immediate(),
    )


@pytest_asyncio.fixture
async def ready_session(
    session: DeviceSessionTestHarness,
    fake_transport: FakeStrapTransport,
) -> DeviceSessionTestHarness:
    """Session that completed connect(); handshake writes and write call counts are cleared."""
    assert await session.connect()
    fake_transport.writes.clear()
    fake_transport.write.reset_mock()
    return session
