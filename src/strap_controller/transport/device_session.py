"""Device session: link lifecycle, packet dispatch and historical sync for one strap.

State machine::

    IDLE → CONNECTING → [BONDING] → DISCOVERING_SERVICES → SUBSCRIBING_NOTIFICATIONS → READY
                                                                                     ↓
    (any non-terminal) ──────────────────────────────────────────────────→ DISCONNECTING → DISCONNECTED
    (any non-terminal) → FAILED

DISCONNECTED and FAILED are terminal; a session object is used for one link
and then discarded.

**Concurrency**: the transport may deliver notifications on any thread.
They are queued onto the session's event loop and consumed by a single router
task, so dispatch, buffer mutation and HistoryEnd acknowledgements happen one
frame at a time in arrival order. State transitions take ``_state_lock``,
buffer changes take ``_sync_lock`` and characteristic writes take
``_write_lock`` (one write in flight, followed by a settle delay).

**Teardown** runs in exactly one task no matter how many callers ask for it
(explicit ``disconnect()`` racing a transport link-loss report); later callers
await the same task.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from strap_controller.const import (
    STRAP_HISTORY_BATCH_SIZE,
    STRAP_INCREMENT_SEQUENCE,
    STRAP_SERVICE_UUID,
    STRAP_SYNC_LOOKBACK_HOURS,
)
from strap_controller.correlation import correlation_context, ensure_correlation_id
from strap_controller.logging_abstraction import get_logger
from strap_controller.metrics import registry
from strap_controller.protocol import commands
from strap_controller.protocol.alarm_time import resolve_alarm_time
from strap_controller.protocol.commands import StrapCommand
from strap_controller.protocol.exceptions import StrapProtocolError
from strap_controller.protocol.history import HeartRateRecord, decode_heart_rate_records, parse_history_metadata
from strap_controller.protocol.packet_types import (
    CommandNumber,
    EventNumber,
    MetadataType,
    PacketType,
    StrapPacket,
)
from strap_controller.protocol.responses import parse_battery_level, parse_console_text
from strap_controller.protocol.strap_protocol import StrapProtocol
from strap_controller.transport.capability import (
    NOTIFY_PROPERTIES,
    NOTIFY_ROLES,
    OPTIONAL_ROLES,
    REQUIRED_ROLES,
    WRITE_PROPERTIES,
    CharacteristicRole,
    GattCharacteristic,
    GattService,
    LinkEvent,
    RecordSink,
    StrapTransport,
    supports,
)
from strap_controller.transport.exceptions import CharacteristicMissingError, DiscoveryError, StrapSessionError
from strap_controller.transport.timing import SessionTimings

logger = get_logger(__name__)

PacketObserver = Callable[[StrapPacket], None]


class SessionState(Enum):
    """Device session state enumeration."""

    IDLE = "idle"
    CONNECTING = "connecting"
    BONDING = "bonding"
    DISCOVERING_SERVICES = "discovering_services"
    SUBSCRIBING_NOTIFICATIONS = "subscribing_notifications"
    READY = "ready"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.DISCONNECTED, SessionState.FAILED})
SENDABLE_STATES = frozenset({SessionState.READY, SessionState.DISCONNECTING})

_NotificationItem = tuple[CharacteristicRole, bytes]


@dataclass
class HistoricalSyncState:
    """Progress of the historical download; mutated only under the session's sync lock."""

    active: bool = False
    record_buffer: list[HeartRateRecord] = field(default_factory=list)
    window_start: datetime | None = None
    window_end: datetime | None = None
    last_offset: int | None = None
    batches_flushed: int = 0
    records_discarded: int = 0


@dataclass
class _Observer:
    callback: PacketObserver
    key: int | None = None


def _command_label(frame: bytes) -> str:
    # inner command byte sits after SOF, length (2), CRC-8, type and sequence
    if len(frame) < 7:
        return "raw"
    try:
        return CommandNumber(frame[6]).name.lower()
    except ValueError:
        return f"0x{frame[6]:02x}"


def _as_datetime(value: datetime | int | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(value, tz=UTC)


class DeviceSession:
    """Owns one logical connection to one strap.

    Example:
        session = DeviceSession(BleakStrapTransport(), "AA:BB:CC:DD:EE:FF", sink=my_sink)
        if await session.connect():
            session.add_event_observer(on_double_tap, EventNumber.DOUBLE_TAP)
            await session.start_historical_sync()
            ...
            await session.disconnect()
    """

    def __init__(
        self,
        transport: StrapTransport,
        device_ref: str,
        sink: RecordSink | None = None,
        timings: SessionTimings | None = None,
        batch_size: int = STRAP_HISTORY_BATCH_SIZE,
        increment_sequence: bool = STRAP_INCREMENT_SEQUENCE,
        sync_lookback: timedelta = timedelta(hours=STRAP_SYNC_LOOKBACK_HOURS),
    ) -> None:
        """Initialize a device session.

        Args:
            transport: Radio capability implementing StrapTransport
            device_ref: Transport address of the strap
            sink: Receives flushed historical record batches (None drops them)
            timings: Pacing configuration (defaults to SessionTimings())
            batch_size: Buffered records that trigger a flush
            increment_sequence: Send an incrementing sequence byte instead of 0
            sync_lookback: Default historical window when no start is given

        """
        self.transport: StrapTransport = transport
        self.device_ref: str = device_ref
        self.sink: RecordSink | None = sink
        self.timings: SessionTimings = timings or SessionTimings()
        self.batch_size: int = max(1, batch_size)
        self.increment_sequence: bool = increment_sequence
        self.sync_lookback: timedelta = sync_lookback

        self.state: SessionState = SessionState.IDLE
        self.sync: HistoricalSyncState = HistoricalSyncState()
        self.battery_level: int | None = None

        self._state_lock: asyncio.Lock = asyncio.Lock()
        self._sync_lock: asyncio.Lock = asyncio.Lock()
        self._write_lock: asyncio.Lock = asyncio.Lock()
        self._sequence: int = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._service: GattService | None = None
        self._characteristics: dict[CharacteristicRole, GattCharacteristic] = {}
        self._subscribed: list[CharacteristicRole] = []
        self._transport_connected: bool = False
        self._link_lost: bool = False

        self._notification_queue: asyncio.Queue[_NotificationItem | None] = asyncio.Queue()
        self._router_task: asyncio.Task[None] | None = None
        self._teardown_task: asyncio.Task[None] | None = None

        self._data_observers: list[_Observer] = []
        self._command_observers: list[_Observer] = []
        self._event_observers: list[_Observer] = []

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    @property
    def subscribed_roles(self) -> tuple[CharacteristicRole, ...]:
        return tuple(self._subscribed)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _transition(
        self,
        new_state: SessionState,
        from_states: frozenset[SessionState] | None = None,
    ) -> bool:
        """Move to ``new_state`` unless the current state forbids it.

        Terminal states never change, and DISCONNECTING only moves on to
        DISCONNECTED. ``from_states`` further restricts the allowed origins.

        Returns:
            True if the transition happened

        """
        async with self._state_lock:
            current = self.state
            blocked = current in TERMINAL_STATES or (
                current == SessionState.DISCONNECTING and new_state != SessionState.DISCONNECTED
            )
            if blocked or (from_states is not None and current not in from_states):
                logger.debug(
                    "Ignoring transition %s → %s",
                    current.value,
                    new_state.value,
                    extra={"device": self.device_ref},
                )
                return False
            self.state = new_state
            registry.record_session_state(self.device_ref, new_state.value)

        logger.info(
            "Session state %s → %s",
            current.value,
            new_state.value,
            extra={"device": self.device_ref},
        )
        return True

    async def _advance(self, new_state: SessionState) -> None:
        """Transition during connect; raises if teardown or failure got there first."""
        if not await self._transition(new_state):
            error_msg = f"session closed before reaching {new_state.value}"
            raise StrapSessionError(error_msg, state=self.state.value)

    async def connect(self) -> bool:
        """Run the full link bring-up and handshake.

        Returns:
            True if the session reached READY and was still READY after the handshake
            (handshake command failures are only logged), False if the session was not
            IDLE, initialization failed (state FAILED) or teardown started meanwhile

        Raises:
            asyncio.CancelledError: If the calling task is cancelled; the session is
                left FAILED with its resources released

        """
        with correlation_context():
            if not await self._transition(SessionState.CONNECTING, from_states=frozenset({SessionState.IDLE})):
                logger.warning(
                    "Connect ignored: session is %s",
                    self.state.value,
                    extra={"device": self.device_ref},
                )
                return False

            logger.info("→ Connecting to strap", extra={"device": self.device_ref, "timings": repr(self.timings)})
            self._loop = asyncio.get_running_loop()
            self.transport.set_link_state_handler(self._on_link_event)

            try:
                await self._establish()
            except asyncio.CancelledError:
                logger.warning("✗ Connect cancelled", extra={"device": self.device_ref})
                await self._fail("cancelled")
                raise
            except TimeoutError:
                logger.error("✗ Connect timed out", extra={"device": self.device_ref})
                await self._fail("timeout")
            except StrapProtocolError as e:
                logger.error(
                    "✗ Session initialization failed: %s",
                    e,
                    extra={"device": self.device_ref, "error_type": type(e).__name__},
                )
                await self._fail(getattr(e, "reason", type(e).__name__))
            except Exception as e:
                # Backends raise their own error types (BleakError, OSError, DBus errors, ...)
                logger.exception(
                    "✗ Transport error during connect",
                    extra={"device": self.device_ref, "error": str(e), "error_type": type(e).__name__},
                )
                await self._fail("transport_error")

            if self.state != SessionState.READY:
                registry.record_connect(self.device_ref, "failed")
                return False

            registry.record_connect(self.device_ref, "success")
            await self._run_handshake()
            if self.state != SessionState.READY:
                logger.warning(
                    "✗ Session left READY during handshake: %s",
                    self.state.value,
                    extra={"device": self.device_ref},
                )
                return False
            logger.info("✓ Strap session ready", extra={"device": self.device_ref})
            return True

    async def _establish(self) -> None:
        connected = await asyncio.wait_for(
            self.transport.connect(self.device_ref),
            timeout=self.timings.connect_timeout_seconds,
        )
        if not connected:
            error_msg = "transport_connect_failed"
            raise StrapSessionError(error_msg, state=self.state.value)
        self._transport_connected = True

        if self._teardown_task is not None or self.state in TERMINAL_STATES:
            # Teardown ran while the link was still coming up and had nothing to close
            await self._disconnect_transport()
            error_msg = "session closed while connecting"
            raise StrapSessionError(error_msg, state=self.state.value)

        await self._bond()
        await self._discover()
        await self._subscribe_notifications()
        await self._advance(SessionState.READY)

    async def _bond(self) -> None:
        if await self.transport.is_bonded(self.device_ref):
            logger.info("Strap already bonded, skipping bonding", extra={"device": self.device_ref})
            return

        await self._advance(SessionState.BONDING)
        try:
            bonded = await asyncio.wait_for(
                self.transport.bond(self.device_ref),
                timeout=self.timings.connect_timeout_seconds,
            )
        except TimeoutError:
            bonded = False
            logger.warning("Bond request timed out", extra={"device": self.device_ref})
        except (StrapProtocolError, OSError, RuntimeError) as e:
            bonded = False
            logger.warning(
                "Bond request failed: %s",
                e,
                extra={"device": self.device_ref, "error_type": type(e).__name__},
            )

        await asyncio.sleep(self.timings.bond_settle_seconds)
        if await self.transport.is_bonded(self.device_ref):
            logger.info("✓ Strap bonded", extra={"device": self.device_ref})
        else:
            # Realtime HR and most commands still work unbonded
            logger.warning(
                "Strap not bonded, continuing unbonded",
                extra={"device": self.device_ref, "bond_result": bonded},
            )

    async def _discover(self) -> None:
        await self._advance(SessionState.DISCOVERING_SERVICES)

        service = await self.transport.discover_service(self.device_ref, STRAP_SERVICE_UUID)
        if service is None:
            error_reason = "service_missing"
            raise DiscoveryError(error_reason, STRAP_SERVICE_UUID)
        self._service = service

        for role in (*REQUIRED_ROLES, *OPTIONAL_ROLES):
            characteristic = await self.transport.get_characteristic(service, role.uuid)
            if characteristic is None:
                if role in OPTIONAL_ROLES:
                    logger.debug("Optional characteristic %s not present", role.label)
                    continue
                raise CharacteristicMissingError(role.label, role.uuid)
            self._characteristics[role] = characteristic

        command_char = self._characteristics[CharacteristicRole.CMD_TO_STRAP]
        if not supports(command_char, WRITE_PROPERTIES):
            raise CharacteristicMissingError(
                CharacteristicRole.CMD_TO_STRAP.label,
                CharacteristicRole.CMD_TO_STRAP.uuid,
                reason="characteristic_not_writable",
            )
        logger.debug(
            "Discovered %d characteristics",
            len(self._characteristics),
            extra={"roles": [role.label for role in self._characteristics]},
        )

    async def _subscribe_notifications(self) -> None:
        await self._advance(SessionState.SUBSCRIBING_NOTIFICATIONS)
        self._start_router()

        for role in NOTIFY_ROLES:
            characteristic = self._characteristics.get(role)
            if characteristic is None:
                continue
            if not supports(characteristic, NOTIFY_PROPERTIES):
                logger.debug("Characteristic %s is not notify-capable", role.label)
                continue
            if self._teardown_task is not None:
                error_msg = "teardown started while subscribing"
                raise StrapSessionError(error_msg, state=self.state.value)

            try:
                await self.transport.subscribe(characteristic, functools.partial(self._enqueue_notification, role))
            except Exception as e:
                # One dead channel must not stop the others from being subscribed
                registry.record_subscription(self.device_ref, role.label, "failed")
                logger.exception(
                    "✗ Subscription to %s failed",
                    role.label,
                    extra={"device": self.device_ref, "error": str(e), "error_type": type(e).__name__},
                )
                continue

            self._subscribed.append(role)
            registry.record_subscription(self.device_ref, role.label, "success")
            logger.debug("✓ Subscribed to %s", role.label)

        if CharacteristicRole.DATA_FROM_STRAP not in self._subscribed:
            raise CharacteristicMissingError(
                CharacteristicRole.DATA_FROM_STRAP.label,
                CharacteristicRole.DATA_FROM_STRAP.uuid,
                reason="data_channel_unavailable",
            )

    async def _run_handshake(self) -> None:
        steps: tuple[StrapCommand, ...] = (
            commands.get_hello(),
            commands.set_clock(datetime.now(UTC)),
            commands.get_advertising_name(),
            commands.enter_high_freq_sync(),
        )
        for index, command in enumerate(steps):
            if index:
                await asyncio.sleep(self.timings.handshake_delay_seconds)
            if self.state != SessionState.READY:
                break
            if not await self.send(command):
                logger.warning(
                    "Handshake command %s failed",
                    command.name,
                    extra={"device": self.device_ref, "step": index + 1},
                )

    async def _fail(self, reason: str) -> None:
        """Enter FAILED and release everything the partial bring-up acquired."""
        if not await self._transition(SessionState.FAILED):
            # Teardown already owns cleanup
            return

        logger.error("✗ Session failed: %s", reason, extra={"device": self.device_ref, "reason": reason})
        await self._release_subscriptions()
        await self._disconnect_transport()
        await self._stop_router()
        async with self._sync_lock:
            self.sync.active = False
            await self._flush_locked("failed")
        self._clear_observers()
        self.transport.set_link_state_handler(None)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _begin_teardown(self, reason: str) -> asyncio.Task[None]:
        if self._teardown_task is None:
            self._teardown_task = asyncio.get_running_loop().create_task(
                self._teardown(reason),
                name=f"strap-teardown-{self.device_ref}",
            )
        else:
            logger.debug("Teardown already in progress", extra={"reason": reason})
        return self._teardown_task

    async def disconnect(self) -> None:
        """Disconnect and release the session; safe to call any number of times."""
        if self._teardown_task is None and self.state in TERMINAL_STATES:
            logger.debug("Disconnect ignored: session is %s", self.state.value)
            return
        await asyncio.shield(self._begin_teardown("requested"))

    def _on_link_event(self, event: LinkEvent) -> None:
        """Link-state callback registered with the transport (any thread)."""
        if event == LinkEvent.CONNECTED:
            logger.debug("Transport reports link up", extra={"device": self.device_ref})
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        self._link_lost = True

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._handle_link_down(event)
        else:
            loop.call_soon_threadsafe(self._handle_link_down, event)

    def _handle_link_down(self, event: LinkEvent) -> None:
        if self._teardown_task is not None or self.state in TERMINAL_STATES:
            return
        logger.warning(
            "Transport reports %s",
            event.value,
            extra={"device": self.device_ref, "state": self.state.value},
        )
        self._begin_teardown(event.value)

    async def _teardown(self, reason: str) -> None:
        ensure_correlation_id()
        previous = self.state
        logger.info("→ Disconnecting", extra={"device": self.device_ref, "reason": reason})

        await self._transition(SessionState.DISCONNECTING)
        try:
            if previous == SessionState.READY and not self._link_lost:
                await self._send_farewell()

            async with self._sync_lock:
                self.sync.active = False

            await self._release_subscriptions()
            await self._disconnect_transport()
            await self._stop_router()

            async with self._sync_lock:
                await self._flush_locked("disconnect")
        finally:
            self._clear_observers()
            self.transport.set_link_state_handler(None)
            await self._transition(SessionState.DISCONNECTED)
            logger.info("✓ Disconnected", extra={"device": self.device_ref, "reason": reason})

    async def _send_farewell(self) -> None:
        for command in (commands.abort_historical_transmits(), commands.exit_high_freq_sync()):
            if not await self.send(command):
                logger.warning("Farewell command %s failed", command.name, extra={"device": self.device_ref})
            await asyncio.sleep(self.timings.disconnect_grace_seconds)

    async def _release_subscriptions(self) -> None:
        for role in reversed(self._subscribed):
            characteristic = self._characteristics.get(role)
            if characteristic is None:
                continue
            try:
                await self.transport.unsubscribe(characteristic)
            except Exception as e:
                # Best-effort: the link may already be gone
                logger.exception(
                    "Failed to unsubscribe from %s",
                    role.label,
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
        self._subscribed.clear()

    async def _disconnect_transport(self) -> None:
        if not self._transport_connected:
            return
        self._transport_connected = False
        try:
            await self.transport.disconnect(self.device_ref)
        except Exception as e:
            logger.exception(
                "Transport disconnect failed",
                extra={"device": self.device_ref, "error": str(e), "error_type": type(e).__name__},
            )

    # ------------------------------------------------------------------
    # Inbound path
    # ------------------------------------------------------------------

    def _start_router(self) -> None:
        if self._router_task is None or self._router_task.done():
            self._router_task = asyncio.create_task(
                self._notification_router(),
                name=f"strap-router-{self.device_ref}",
            )

    def _enqueue_notification(self, role: CharacteristicRole, data: bytes | bytearray) -> None:
        """Notification handler given to the transport (any thread)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        item = (role, bytes(data))
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._notification_queue.put_nowait(item)
        else:
            loop.call_soon_threadsafe(self._notification_queue.put_nowait, item)

    async def _notification_router(self) -> None:
        """Consume queued notifications until the ``None`` sentinel arrives."""
        ensure_correlation_id()
        try:
            while True:
                item = await self._notification_queue.get()
                try:
                    if item is None:
                        break
                    role, raw = item
                    await self.dispatch(role, raw)
                finally:
                    self._notification_queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Notification router cancelled (clean shutdown)")
            raise

    async def _stop_router(self) -> None:
        """Let the router finish what is queued, then stop it."""
        task = self._router_task
        self._router_task = None
        if task is None or task.done():
            return

        self._notification_queue.put_nowait(None)
        done, _ = await asyncio.wait({task}, timeout=self.timings.write_timeout_seconds)
        if not done:
            logger.warning("Notification router did not drain in time, cancelling")
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def dispatch(self, origin: CharacteristicRole, raw: bytes) -> StrapPacket | None:
        """Decode one notification and route it.

        Invalid frames are logged, counted and dropped. Valid frames first go
        through the session's own handling (historical data, metadata
        acknowledgements, battery tracking) and then to the observers of their
        category: command responses, events, or data (everything else).

        Returns:
            The decoded packet, or None if the frame was dropped

        """
        parsed = StrapProtocol.decode_packet(raw)
        if parsed.packet is None:
            reason = parsed.error.value if parsed.error is not None else "unknown"
            registry.record_decode_error(self.device_ref, reason)
            logger.warning(
                "Dropping invalid frame from %s: %s",
                origin.label,
                reason,
                extra={"origin": origin.label, "reason": reason, "frame_preview": bytes(raw[:16]).hex()},
            )
            return None

        packet = parsed.packet
        registry.record_frame_received(self.device_ref, origin.label, packet.type_name)
        logger.debug(
            "← %s %s from %s",
            packet.type_name,
            packet.subject_name,
            origin.label,
            extra={"sequence": packet.sequence, "payload_size": len(packet.payload)},
        )

        try:
            await self._handle_packet(packet)
        except StrapProtocolError as e:
            logger.warning(
                "Could not process %s %s: %s",
                packet.type_name,
                packet.subject_name,
                e,
                extra={"error_type": type(e).__name__},
            )

        self._notify_observers(packet)
        return packet

    async def _handle_packet(self, packet: StrapPacket) -> None:
        match packet.kind:
            case PacketType.HISTORICAL_DATA:
                await self._handle_historical_data(packet)
            case PacketType.METADATA:
                await self._handle_metadata(packet)
            case PacketType.COMMAND_RESPONSE:
                await self._handle_command_response(packet)
            case PacketType.EVENT:
                self._handle_event(packet)
            case PacketType.CONSOLE_LOGS:
                logger.debug("Strap console: %s", parse_console_text(packet.payload))
            case _:
                pass

    async def _handle_command_response(self, packet: StrapPacket) -> None:
        if packet.command == CommandNumber.ABORT_HISTORICAL_TRANSMITS:
            await self._finish_sync("abort_response")
        elif packet.command == CommandNumber.GET_BATTERY_LEVEL:
            self.battery_level = parse_battery_level(packet.payload)
            logger.info("Battery level %d%%", self.battery_level, extra={"device": self.device_ref})

    def _handle_event(self, packet: StrapPacket) -> None:
        event = packet.event
        if event == EventNumber.BATTERY_LEVEL:
            self.battery_level = parse_battery_level(packet.payload)
            logger.info("Battery level event %d%%", self.battery_level, extra={"device": self.device_ref})
        elif event == EventNumber.ERROR:
            logger.warning("Strap reported error: %s", parse_console_text(packet.payload))
        elif event == EventNumber.CONSOLE_OUTPUT:
            logger.debug("Strap console: %s", parse_console_text(packet.payload))
        elif event is not None:
            logger.info("Strap event %s", event.name, extra={"device": self.device_ref})
        else:
            logger.debug("Unknown strap event 0x%02x", packet.command_or_event)

    def _notify_observers(self, packet: StrapPacket) -> None:
        if packet.packet_type == PacketType.COMMAND_RESPONSE:
            observers, category = self._command_observers, "command_response"
        elif packet.packet_type == PacketType.EVENT:
            observers, category = self._event_observers, "event"
        else:
            observers, category = self._data_observers, "data"

        for observer in list(observers):
            if observer.key is not None and observer.key != packet.command_or_event:
                continue
            try:
                observer.callback(packet)
            except Exception as e:
                registry.record_observer_error(self.device_ref, category)
                logger.exception(
                    "Observer raised while handling %s %s",
                    packet.type_name,
                    packet.subject_name,
                    extra={"category": category, "error": str(e), "error_type": type(e).__name__},
                )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @staticmethod
    def _register(observers: list[_Observer], observer: _Observer) -> Callable[[], None]:
        observers.append(observer)

        def unregister() -> None:
            with contextlib.suppress(ValueError):
                observers.remove(observer)

        return unregister

    def add_data_observer(self, callback: PacketObserver) -> Callable[[], None]:
        """Observe realtime, historical, metadata and console packets.

        Returns:
            Callable that removes the observer
        """
        return self._register(self._data_observers, _Observer(callback))

    def add_command_response_observer(
        self,
        callback: PacketObserver,
        command: CommandNumber | int | None = None,
    ) -> Callable[[], None]:
        """Observe command responses, optionally only those for ``command``."""
        key = int(command) if command is not None else None
        return self._register(self._command_observers, _Observer(callback, key))

    def add_event_observer(
        self,
        callback: PacketObserver,
        event: EventNumber | int | None = None,
    ) -> Callable[[], None]:
        """Observe strap events, optionally only ``event``."""
        key = int(event) if event is not None else None
        return self._register(self._event_observers, _Observer(callback, key))

    def _clear_observers(self) -> None:
        self._data_observers.clear()
        self._command_observers.clear()
        self._event_observers.clear()

    # ------------------------------------------------------------------
    # Outbound path
    # ------------------------------------------------------------------

    def _next_sequence(self) -> int:
        if not self.increment_sequence:
            return 0
        sequence = self._sequence
        self._sequence = (self._sequence + 1) & 0xFF
        return sequence

    async def send(self, command: StrapCommand) -> bool:
        """Encode ``command`` with this session's sequence number and send it."""
        return await self.send_command(command.encode(self._next_sequence()))

    async def send_command(self, frame: bytes) -> bool:
        """Write one encoded frame to the command characteristic.

        Writes are issued strictly one at a time in call order and each is
        followed by the write settle delay. Nothing is retried.

        Returns:
            True if the transport confirmed the write; False if the session is not
            READY/DISCONNECTING, the write characteristic is missing, or the write
            failed, timed out or was cancelled by the transport

        """
        label = _command_label(frame)

        async with self._state_lock:
            state = self.state
        if state not in SENDABLE_STATES:
            registry.record_command_sent(self.device_ref, label, "rejected")
            logger.debug(
                "Refusing to send %s in state %s",
                label,
                state.value,
                extra={"device": self.device_ref},
            )
            return False

        characteristic = self._characteristics.get(CharacteristicRole.CMD_TO_STRAP)
        if characteristic is None:
            registry.record_command_sent(self.device_ref, label, "unavailable")
            logger.warning("Command characteristic unavailable, cannot send %s", label)
            return False

        async with self._write_lock:
            started = time.perf_counter()
            success = await self._write(characteristic, frame, label)
            registry.record_write_latency(self.device_ref, time.perf_counter() - started)
            if self.timings.write_settle_seconds > 0:
                await asyncio.sleep(self.timings.write_settle_seconds)

        registry.record_command_sent(self.device_ref, label, "success" if success else "failed")
        if success:
            logger.debug("→ Sent %s", label, extra={"frame": frame.hex()})
        return success

    async def _write(self, characteristic: GattCharacteristic, frame: bytes, label: str) -> bool:
        try:
            return bool(
                await asyncio.wait_for(
                    self.transport.write(characteristic, frame),
                    timeout=self.timings.write_timeout_seconds,
                ),
            )
        except TimeoutError:
            logger.warning("✗ Write of %s timed out", label, extra={"device": self.device_ref})
            return False
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # The transport aborted the write on its own; report it as a failed send
            logger.warning("✗ Write of %s cancelled by transport", label, extra={"device": self.device_ref})
            return False
        except Exception as e:
            logger.exception(
                "✗ Write of %s failed",
                label,
                extra={"device": self.device_ref, "error": str(e), "error_type": type(e).__name__},
            )
            return False

    async def request_battery_level(self) -> bool:
        return await self.send(commands.get_battery_level())

    async def set_clock(self, when: datetime | None = None) -> bool:
        return await self.send(commands.set_clock(when or datetime.now(UTC)))

    async def toggle_realtime_hr(self, enable: bool) -> bool:
        return await self.send(commands.toggle_realtime_hr(enable))

    async def set_alarm(self, when: datetime | str) -> bool:
        """Set the strap alarm from a datetime or an alarm string such as "07:30" or "15min"."""
        moment = resolve_alarm_time(when) if isinstance(when, str) else when
        logger.info("Setting alarm for %s", moment.isoformat(), extra={"device": self.device_ref})
        return await self.send(commands.set_alarm_time(moment))

    async def disable_alarm(self) -> bool:
        return await self.send(commands.disable_alarm())

    async def reboot(self) -> bool:
        return await self.send(commands.reboot_strap())

    # ------------------------------------------------------------------
    # Historical sync
    # ------------------------------------------------------------------

    async def start_historical_sync(
        self,
        window_start: datetime | int | None = None,
        window_end: datetime | int | None = None,
    ) -> bool:
        """Ask the strap to stream stored records from ``window_start`` onwards.

        The sync is marked active before the first command goes out so a
        concurrent start is rejected; a failed command clears it again.

        Args:
            window_start: First instant to download (default: now minus sync_lookback)
            window_end: Recorded on the sync state for callers; the strap decides
                where the stream ends

        Returns:
            True if both SetReadPointer and SendHistoricalData were written

        """
        with correlation_context():
            if self.state != SessionState.READY:
                logger.warning("Cannot start historical sync in state %s", self.state.value)
                return False

            start = _as_datetime(window_start) or datetime.now(UTC) - self.sync_lookback
            async with self._sync_lock:
                if self.sync.active:
                    logger.warning("Historical sync already active", extra={"device": self.device_ref})
                    return False
                self.sync.active = True
                self.sync.window_start = start
                self.sync.window_end = _as_datetime(window_end)
                self.sync.last_offset = None

            logger.info(
                "→ Starting historical sync",
                extra={"device": self.device_ref, "window_start": start.isoformat()},
            )

            try:
                if not await self.send(commands.set_read_pointer(start)):
                    logger.error("✗ SetReadPointer failed, historical sync aborted")
                    await self._finish_sync("start_failed")
                    return False

                await asyncio.sleep(self.timings.sync_start_delay_seconds)

                if not await self.send(commands.send_historical_data(start=True)):
                    logger.error("✗ SendHistoricalData failed, historical sync aborted")
                    await self._finish_sync("start_failed")
                    return False
            except asyncio.CancelledError:
                logger.warning("✗ Historical sync start cancelled", extra={"device": self.device_ref})
                await self._finish_sync("cancelled")
                raise

            logger.info("✓ Historical sync started", extra={"device": self.device_ref})
            return True

    async def abort_historical_sync(self) -> bool:
        """Send AbortHistoricalTransmits, end the sync and flush what was buffered."""
        sent = await self.send(commands.abort_historical_transmits())
        await self._finish_sync("abort")
        return sent

    async def _finish_sync(self, reason: str) -> None:
        async with self._sync_lock:
            was_active = self.sync.active
            self.sync.active = False
            await self._flush_locked(reason)
        if was_active:
            logger.info("✓ Historical sync finished (%s)", reason, extra={"device": self.device_ref})

    async def _handle_historical_data(self, packet: StrapPacket) -> None:
        result = decode_heart_rate_records(packet.payload)
        registry.record_history_records(self.device_ref, "decoded", len(result.records))
        registry.record_history_records(self.device_ref, "discarded", result.discarded)

        async with self._sync_lock:
            if not self.sync.active:
                logger.debug("Historical data received outside an active sync")
            self.sync.record_buffer.extend(result.records)
            self.sync.records_discarded += result.discarded
            if len(self.sync.record_buffer) >= self.batch_size:
                await self._flush_locked("batch")

    async def _handle_metadata(self, packet: StrapPacket) -> None:
        metadata = parse_history_metadata(packet.payload, packet.command_or_event)

        match metadata.metadata_type:
            case MetadataType.HISTORY_START:
                logger.info(
                    "History chunk start",
                    extra={"unix": metadata.unix, "data": metadata.data},
                )
            case MetadataType.HISTORY_END:
                await self._acknowledge_history_end(metadata.data)
            case MetadataType.HISTORY_COMPLETE:
                await self._finish_sync("complete")
            case _:
                logger.debug("Ignoring metadata type %s", metadata.metadata_type)

    async def _acknowledge_history_end(self, offset: int) -> None:
        if self.state != SessionState.READY or self._link_lost:
            logger.debug("Not acknowledging HistoryEnd in state %s", self.state.value)
            return

        async with self._sync_lock:
            if not self.sync.active:
                logger.debug("HistoryEnd received outside an active sync")
            self.sync.last_offset = offset

        sent = await self.send(commands.historical_data_result(offset))
        registry.record_history_ack(self.device_ref, "success" if sent else "failed")
        if sent:
            logger.debug("✓ Acknowledged HistoryEnd", extra={"offset": offset})
        else:
            logger.warning("✗ Failed to acknowledge HistoryEnd", extra={"offset": offset})

    async def _flush_locked(self, reason: str) -> int:
        """Hand the buffered records to the sink. Caller holds ``_sync_lock``.

        Returns:
            Number of records flushed
        """
        if not self.sync.record_buffer:
            return 0

        batch = list(self.sync.record_buffer)
        self.sync.record_buffer.clear()
        self.sync.batches_flushed += 1
        registry.record_history_flush(self.device_ref, reason)

        if self.sink is None:
            logger.warning("No record sink configured, dropping %d records", len(batch))
            return len(batch)

        try:
            result = self.sink.accept_batch(batch)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(
                "✗ Record sink rejected %d records",
                len(batch),
                extra={"reason": reason, "error": str(e), "error_type": type(e).__name__},
            )
        else:
            logger.info("✓ Flushed %d records (%s)", len(batch), reason, extra={"device": self.device_ref})
        return len(batch)
