"""
Device Link - Connection to the relay controller board.

Owns the serial connection lifecycle:

    disconnected -> connecting -> connected -> disconnected

While connected, a read loop decodes newline-delimited messages from the
board and a sender task writes queued commands one at a time. On a
disconnect (device removed, EOF, read/write error) the link releases the
port, clears the relay flag and schedules a single silent reconnect.
"""

import asyncio
from dataclasses import dataclass
from typing import Final, Optional

from core.backoff import ExponentialBackoff
from core.exceptions import DeviceConnectionError, DevicePermissionRequired
from core.interfaces import SerialTransport
from core.value_objects import ConnectionState, SerialDeviceInfo, UsbDeviceFilter
from domain.line_protocol import (
    InboundMessage,
    LineDecoder,
    encode_command,
    parse_message,
)
from event_system import EventPublisher, EventType
from loggers import logger


# =============================================================================
# Constants
# =============================================================================

READ_CHUNK_SIZE: Final[int] = 256
LOOP_YIELD_S: Final[float] = 0.01
MAX_RECONNECT_DELAY_S: Final[float] = 30.0


# =============================================================================
# Connection State
# =============================================================================


@dataclass
class DeviceConnection:
    """
    Mutable state of the serial link.

    Reader and writer are set only while connected.
    """

    state: ConnectionState = ConnectionState.DISCONNECTED
    device: Optional[SerialDeviceInfo] = None
    reader: Optional[asyncio.StreamReader] = None
    writer: Optional[asyncio.StreamWriter] = None
    relay_active: bool = False
    needs_permission: bool = False
    last_error: Optional[str] = None

    def release(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.reader = None
        self.writer = None
        self.relay_active = False


# =============================================================================
# Device Link
# =============================================================================


class DeviceLink:
    """
    Serial link to the controller board.

    Attributes:
        baudrate: Serial baud rate.
        reconnect_delay: Delay before the silent reconnect after a disconnect.
        reconnect_attempts: Number of reconnect attempts scheduled so far.
    """

    def __init__(
        self,
        transport: SerialTransport,
        filters: list[UsbDeviceFilter],
        publisher: EventPublisher,
        baudrate: int = 9600,
        reconnect_delay: float = 1.0,
        command_queue_size: int = 8,
        read_chunk_size: int = READ_CHUNK_SIZE,
        loop_yield: float = LOOP_YIELD_S,
    ) -> None:
        """
        Initialize the link.

        Args:
            transport: Platform serial access.
            filters: Allow-list of USB vendor/product pairs.
            publisher: Publisher for device events.
            baudrate: Serial baud rate.
            reconnect_delay: Seconds before reconnecting after a disconnect.
            command_queue_size: Maximum queued outbound commands.
            read_chunk_size: Bytes requested per read.
            loop_yield: Pause after each read pass.
        """
        self._transport = transport
        self._filters = list(filters)
        self._publisher = publisher
        self.baudrate = baudrate
        self.reconnect_delay = reconnect_delay
        self._command_queue_size = command_queue_size
        self._read_chunk_size = read_chunk_size
        self._loop_yield = loop_yield

        self._connection = DeviceConnection()
        self._decoder = LineDecoder()
        self._commands: Optional[asyncio.Queue] = None
        self._read_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_backoff = ExponentialBackoff(
            base_delay=reconnect_delay,
            max_delay=MAX_RECONNECT_DELAY_S,
            jitter=0,
        )
        self.reconnect_attempts = 0
        self._subscribed = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def connection(self) -> DeviceConnection:
        return self._connection

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.state == ConnectionState.CONNECTED

    @property
    def relay_active(self) -> bool:
        return self._connection.relay_active

    @property
    def needs_permission(self) -> bool:
        return self._connection.needs_permission

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def is_reading(self) -> bool:
        return self._read_task is not None and not self._read_task.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> bool:
        """
        Subscribe to hot-plug signals and try a silent reconnect.

        Returns:
            True if a device was connected.
        """
        if not self._subscribed:
            self._transport.subscribe_disconnect(self._on_device_removed)
            self._transport.subscribe_connect(self._on_device_added)
            self._subscribed = True

        return await self.connect_silently()

    async def connect_silently(self) -> bool:
        """
        Connect to a previously authorized device without operator action.

        Sets ``needs_permission`` when no authorized device is attached.

        Returns:
            True if connected.
        """
        if self._connection.state != ConnectionState.DISCONNECTED:
            return self.is_connected

        try:
            devices = await self._transport.list_authorized_devices(self._filters)
        except Exception as e:
            logger.error(f"Failed to list serial devices: {e}")
            return False

        if not devices:
            notice = DevicePermissionRequired("No authorized controller board attached")
            if not self._connection.needs_permission:
                logger.warning(f"{notice.message}, operator authorization required")
            self._connection.needs_permission = True
            self._connection.last_error = notice.code
            await self._publish_state()
            return False

        self._connection.needs_permission = False
        return await self._open(devices[0])

    async def authorize_and_connect(self) -> bool:
        """
        Authorize a newly attached board and connect to it.

        Must be triggered by an operator action.

        Raises:
            DeviceNotFoundError: If no board matching the allow-list is attached.
        """
        if self.is_connected:
            return True

        device = await self._transport.request_new_device_authorization(self._filters)
        logger.info(f"Controller board authorized: {device.identity} at {device.path}")
        self._connection.needs_permission = False
        self._cancel_reconnect()

        if self._connection.state != ConnectionState.DISCONNECTED:
            return self.is_connected
        return await self._open(device)

    async def stop(self) -> None:
        """Close the port and stop all tasks."""
        self._cancel_reconnect()
        await self._release()
        await self._publish_state()
        logger.info("Device link stopped")

    async def _open(self, device: SerialDeviceInfo) -> bool:
        connection = self._connection
        connection.state = ConnectionState.CONNECTING
        connection.device = device
        await self._publish_state()

        try:
            reader, writer = await self._transport.open(device, self.baudrate)
        except (DeviceConnectionError, OSError) as e:
            logger.error(f"Failed to open controller board at {device.path}: {e}")
            connection.last_error = str(e)
            connection.release()
            await self._publish_state()
            self._schedule_reconnect()
            return False

        connection.reader = reader
        connection.writer = writer
        connection.state = ConnectionState.CONNECTED
        connection.last_error = None
        self._reconnect_backoff.reset()
        self._decoder.reset()

        self._commands = asyncio.Queue(maxsize=self._command_queue_size)
        self._read_task = asyncio.create_task(self._read_loop(), name="device_read")
        self._send_task = asyncio.create_task(self._send_loop(), name="device_send")

        logger.info(f"Controller board connected at {device.path} ({self.baudrate} baud)")
        await self._publish_state()
        return True

    async def _release(self) -> None:
        """Cancel loops and close the port. Never cancels the calling task."""
        current = asyncio.current_task()
        for task in (self._read_task, self._send_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._read_task = None
        self._send_task = None
        self._commands = None

        writer = self._connection.writer
        self._connection.release()
        self._decoder.reset()

        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception as e:
                logger.debug(f"Close error (ignored): {e}")

    # =========================================================================
    # Disconnect / Reconnect
    # =========================================================================

    async def handle_disconnect(self, reason: str) -> None:
        """
        Tear down after a physical disconnect or unrecoverable I/O error.

        Idempotent: a second signal for the same disconnect is ignored.
        """
        if self._connection.state == ConnectionState.DISCONNECTED:
            return

        logger.warning(f"Controller board disconnected: {reason}")
        self._connection.last_error = reason
        await self._release()
        await self._publish_state()
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return

        delay = self._reconnect_backoff.next_delay()
        self.reconnect_attempts += 1
        logger.info(f"Reconnecting to controller board in {delay:.1f}s")
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay), name="device_reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        # Not pending any more; a failed open schedules the next attempt.
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        await self.connect_silently()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            if self._reconnect_task is not asyncio.current_task():
                self._reconnect_task.cancel()
        self._reconnect_task = None

    async def _on_device_removed(self, device: SerialDeviceInfo) -> None:
        current = self._connection.device
        if current is not None and current.path == device.path:
            await self.handle_disconnect(f"device removed ({device.path})")

    async def _on_device_added(self, device: SerialDeviceInfo) -> None:
        if self._connection.state == ConnectionState.DISCONNECTED and not self.reconnect_pending:
            logger.info(f"Authorized board attached at {device.path}")
            await self.connect_silently()

    # =========================================================================
    # Read Loop
    # =========================================================================

    async def _read_loop(self) -> None:
        """Read, decode and dispatch lines while connected."""
        reader = self._connection.reader
        try:
            while self._connection.state == ConnectionState.CONNECTED and reader is not None:
                chunk = await reader.read(self._read_chunk_size)
                if not chunk:
                    raise DeviceConnectionError("Serial port closed (EOF)")

                for line in self._decoder.feed(chunk):
                    await self._dispatch_line(line)

                # Let timers and ledger polls run between passes.
                await asyncio.sleep(self._loop_yield)
        except asyncio.CancelledError:
            pass
        except (DeviceConnectionError, OSError) as e:
            await self.handle_disconnect(f"read error: {e}")

    async def feed(self, chunk: bytes) -> None:
        """Decode and dispatch a chunk as if it was read from the port."""
        for line in self._decoder.feed(chunk):
            await self._dispatch_line(line)

    async def _dispatch_line(self, line: str) -> None:
        logger.debug(f"RX: {line}")
        message = parse_message(line)

        if message == InboundMessage.BUTTON_4_PRESSED:
            await self._publisher.publish(EventType.BUTTON_PRESSED, button=4)
        elif message == InboundMessage.RELAY_ON_OK:
            self._set_relay(True)
            await self._publisher.publish(EventType.RELAY_STATE_CHANGED, relay_active=True)
        elif message == InboundMessage.RELAY_AUTO_OFF:
            self._set_relay(False)
            await self._publisher.publish(EventType.RELAY_STATE_CHANGED, relay_active=False)
        else:
            logger.debug(f"Ignoring unknown board message: {line!r}")

    def _set_relay(self, active: bool) -> None:
        if self._connection.relay_active != active:
            logger.info(f"Relay {'ON' if active else 'OFF'}")
        self._connection.relay_active = active

    # =========================================================================
    # Commands
    # =========================================================================

    def send_command(self, token: str) -> bool:
        """
        Queue a command for the board.

        No acknowledgement wait and no retry. Dropped (and logged) when not
        connected or when the queue is full.

        Returns:
            True if the command was queued.
        """
        if not self.is_connected or self._commands is None:
            logger.warning(f"Controller board not connected, dropping command {token}")
            return False

        try:
            self._commands.put_nowait(token)
        except asyncio.QueueFull:
            logger.warning(f"Command queue full, dropping command {token}")
            return False

        return True

    async def _send_loop(self) -> None:
        """Single in-flight sender."""
        commands = self._commands
        if commands is None:
            return

        try:
            while True:
                token = await commands.get()
                writer = self._connection.writer
                if writer is None:
                    logger.warning(f"Port closed, dropping command {token}")
                    continue

                writer.write(encode_command(token))
                await writer.drain()
                logger.info(f"TX: {token}")
        except asyncio.CancelledError:
            pass
        except (DeviceConnectionError, OSError) as e:
            await self.handle_disconnect(f"write error: {e}")

    # =========================================================================
    # Events
    # =========================================================================

    async def _publish_state(self) -> None:
        await self._publisher.publish(
            EventType.DEVICE_STATE_CHANGED,
            state=self._connection.state.value,
            needs_permission=self._connection.needs_permission,
        )
