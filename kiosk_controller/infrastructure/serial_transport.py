"""
USB serial transport for the controller board.

Enumerates serial ports with pyserial, remembers operator-authorized boards
in Redis and opens ports as asyncio streams. A periodic port monitor turns
hot-plug changes into connect / disconnect callbacks.
"""

import asyncio
from typing import Callable, Optional

import serial
import serial.tools.list_ports
import serial_asyncio

from core.exceptions import DeviceConnectionError, DeviceNotFoundError
from core.interfaces import DeviceCallback
from core.value_objects import SerialDeviceInfo, UsbDeviceFilter
from infrastructure.redis_repository import AuthorizedDeviceRepository
from loggers import logger


def _matches(filters: list[UsbDeviceFilter], vendor_id: Optional[int], product_id: Optional[int]) -> bool:
    return any(f.matches(vendor_id, product_id) for f in filters)


class UsbSerialTransport:
    """
    SerialTransport backed by pyserial.

    Attributes:
        filters: Allow-list used by the port monitor.
        monitor_interval: Seconds between port scans.
    """

    def __init__(
        self,
        devices: AuthorizedDeviceRepository,
        filters: list[UsbDeviceFilter],
        monitor_interval: float = 2.0,
        comports: Callable[[], list] = serial.tools.list_ports.comports,
    ) -> None:
        """
        Initialize the transport.

        Args:
            devices: Store of authorized device identities.
            filters: Allow-list used by the port monitor.
            monitor_interval: Seconds between port scans.
            comports: Port enumerator.
        """
        self._devices = devices
        self.filters = list(filters)
        self.monitor_interval = monitor_interval
        self._comports = comports

        self._on_disconnect: list[DeviceCallback] = []
        self._on_connect: list[DeviceCallback] = []
        self._known: dict[str, SerialDeviceInfo] = {}
        self._monitor_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Discovery
    # =========================================================================

    async def scan_ports(self, filters: list[UsbDeviceFilter]) -> list[SerialDeviceInfo]:
        """Attached ports whose USB ids are on the allow-list."""
        # comports() reads sysfs synchronously.
        ports = await asyncio.to_thread(self._comports)
        found = []
        for port in ports:
            if not _matches(filters, port.vid, port.pid):
                continue
            found.append(
                SerialDeviceInfo(
                    path=port.device,
                    vendor_id=port.vid,
                    product_id=port.pid,
                    serial_number=port.serial_number,
                )
            )
        return found

    async def list_authorized_devices(self, filters: list[UsbDeviceFilter]) -> list[SerialDeviceInfo]:
        attached = await self.scan_ports(filters)
        if not attached:
            return []

        authorized = await self._devices.identities()
        return [device for device in attached if device.identity in authorized]

    async def request_new_device_authorization(self, filters: list[UsbDeviceFilter]) -> SerialDeviceInfo:
        """
        Authorize the first attached board matching the allow-list.

        Raises:
            DeviceNotFoundError: If no matching board is attached.
        """
        attached = await self.scan_ports(filters)
        if not attached:
            allowed = ", ".join(str(f) for f in filters)
            raise DeviceNotFoundError(f"No controller board attached (allowed: {allowed})")

        device = attached[0]
        await self._devices.authorize(device)
        self._known[device.path] = device
        logger.info(f"Authorized serial device {device.identity}")
        return device

    async def open(
        self,
        device: SerialDeviceInfo,
        baudrate: int,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Open the port as asyncio streams.

        Raises:
            DeviceConnectionError: If the port cannot be opened.
        """
        try:
            reader, writer = await serial_asyncio.open_serial_connection(
                url=device.path,
                baudrate=baudrate,
            )
        except (serial.SerialException, OSError) as e:
            raise DeviceConnectionError(
                f"Cannot open {device.path}: {e}",
                device_name=device.path,
            ) from e

        logger.info(f"Serial port {device.path} opened at {baudrate} baud")
        return reader, writer

    # =========================================================================
    # Hot-plug
    # =========================================================================

    def subscribe_disconnect(self, callback: DeviceCallback) -> None:
        self._on_disconnect.append(callback)

    def subscribe_connect(self, callback: DeviceCallback) -> None:
        self._on_connect.append(callback)

    async def start_monitor(self) -> None:
        """Start the periodic port scan."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._known = {d.path: d for d in await self.scan_ports(self.filters)}
        self._monitor_task = asyncio.create_task(self._monitor_loop(), name="port_monitor")
        logger.info(f"Port monitor started ({self.monitor_interval}s)")

    async def stop_monitor(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.monitor_interval)
            try:
                await self.poll_changes()
            except Exception as e:
                logger.error(f"Port monitor error: {e}")

    async def poll_changes(self) -> None:
        """Compare attached ports with the last scan and fire callbacks."""
        current = {d.path: d for d in await self.scan_ports(self.filters)}

        removed = [d for path, d in self._known.items() if path not in current]
        added = [d for path, d in current.items() if path not in self._known]
        self._known = current

        for device in removed:
            logger.info(f"Serial device removed: {device.path}")
            await self._fire(self._on_disconnect, device)

        if not added:
            return

        authorized = await self._devices.identities()
        for device in added:
            if device.identity not in authorized:
                logger.info(f"Unauthorized serial device attached: {device.path}")
                continue
            await self._fire(self._on_connect, device)

    async def _fire(self, callbacks: list[DeviceCallback], device: SerialDeviceInfo) -> None:
        for callback in callbacks:
            try:
                await callback(device)
            except Exception as e:
                logger.error(f"Device callback error for {device.path}: {e}")
