"""
Interfaces (Protocols) for the kiosk controller.

Defines contracts for the external collaborators using Python's Protocol
for structural subtyping (duck typing with type hints).
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol, runtime_checkable

from core.value_objects import (
    DisplaySnapshot,
    LedgerBlock,
    MintResult,
    SerialDeviceInfo,
    UsbDeviceFilter,
)


# =============================================================================
# Ledger
# =============================================================================


@runtime_checkable
class LedgerReader(Protocol):
    """
    Read-only access to the ledger.

    Implementations raise ChainQueryError on any fetch failure and expose
    raw integer values and raw calldata bytes.
    """

    async def current_height(self) -> int:
        """Get the current head height."""
        ...

    async def block_with_transactions(self, height: int) -> LedgerBlock:
        """Get a block with its transactions in native order."""
        ...


# =============================================================================
# Serial Transport
# =============================================================================


DeviceCallback = Callable[[SerialDeviceInfo], Awaitable[None]]


@runtime_checkable
class SerialTransport(Protocol):
    """Platform access to attached serial devices."""

    def list_authorized_devices(
        self,
        filters: list[UsbDeviceFilter],
    ) -> Awaitable[list[SerialDeviceInfo]]:
        """Devices matching the filters that were authorized before."""
        ...

    def request_new_device_authorization(
        self,
        filters: list[UsbDeviceFilter],
    ) -> Awaitable[SerialDeviceInfo]:
        """
        Authorize a new device. Must be triggered by an operator action.

        Raises:
            DeviceNotFoundError: If no matching device is attached.
        """
        ...

    def open(
        self,
        device: SerialDeviceInfo,
        baudrate: int,
    ) -> Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
        """
        Open a device.

        Raises:
            DeviceConnectionError: If the port cannot be opened.
        """
        ...

    def subscribe_disconnect(self, callback: DeviceCallback) -> None:
        """Register a callback fired when an attached device goes away."""
        ...

    def subscribe_connect(self, callback: DeviceCallback) -> None:
        """Register a callback fired when an authorized device appears."""
        ...


# =============================================================================
# Side Effect Collaborators
# =============================================================================


@runtime_checkable
class ReceiptMinter(Protocol):
    """Mints a receipt for a confirmed payment."""

    async def mint_receipt(self, merchant_address: str, payer_address: str) -> MintResult:
        ...


@runtime_checkable
class DisplaySink(Protocol):
    """Presentation layer: receives display state and sound triggers."""

    async def publish_state(self, snapshot: DisplaySnapshot) -> None:
        ...

    async def play_sound(self, sound: str) -> None:
        ...
