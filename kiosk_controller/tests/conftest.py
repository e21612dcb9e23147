"""
Pytest configuration for kiosk controller tests.

This conftest.py adds the kiosk_controller directory to sys.path
so that tests can import modules properly.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import pytest


# Add the kiosk_controller directory to sys.path for proper imports
kiosk_controller_path = Path(__file__).parent.parent
if str(kiosk_controller_path) not in sys.path:
    sys.path.insert(0, str(kiosk_controller_path))


from core.exceptions import ChainQueryError, DeviceNotFoundError  # noqa: E402
from core.value_objects import LedgerBlock, MintResult, SerialDeviceInfo  # noqa: E402


# =============================================================================
# Fakes
# =============================================================================


MERCHANT = "0x35321cc55704948ee8c79f3c03cd0fcb055a3ac0"
PAYER = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
BOARD = SerialDeviceInfo(path="/dev/ttyACM0", vendor_id=0x2341, product_id=0x0043, serial_number="A1")


class FakeLedger:
    """In-memory ledger. ``fail_heads`` makes the next N head fetches fail."""

    def __init__(self, head: int = 100) -> None:
        self.head = head
        self.blocks: dict[int, LedgerBlock] = {}
        self.fail_heads = 0
        self.head_calls = 0
        self.block_calls: list[int] = []

    def add_block(self, height: int, *transactions) -> None:
        self.blocks[height] = LedgerBlock(height=height, transactions=tuple(transactions))

    async def current_height(self) -> int:
        self.head_calls += 1
        if self.fail_heads > 0:
            self.fail_heads -= 1
            raise ChainQueryError("node unavailable", method="eth_blockNumber")
        return self.head

    async def block_with_transactions(self, height: int) -> LedgerBlock:
        self.block_calls.append(height)
        return self.blocks.get(height, LedgerBlock(height=height))


class FakeReader:
    """Stream reader fed by the test."""

    def __init__(self) -> None:
        self._chunks: asyncio.Queue = asyncio.Queue()

    def feed_data(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def feed_eof(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._chunks.get()


class FakeWriter:
    """Stream writer recording what was written."""

    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class FakeTransport:
    """Serial transport with one board that may or may not be authorized."""

    def __init__(self, authorized: bool = True, attached: bool = True) -> None:
        self.authorized = authorized
        self.attached = attached
        self.open_error: Optional[Exception] = None
        self.opened: list[SerialDeviceInfo] = []
        self.readers: list[FakeReader] = []
        self.writers: list[FakeWriter] = []
        self.disconnect_callbacks = []
        self.connect_callbacks = []

    async def list_authorized_devices(self, filters):
        if self.attached and self.authorized:
            return [BOARD]
        return []

    async def request_new_device_authorization(self, filters):
        if not self.attached:
            raise DeviceNotFoundError("No controller board attached")
        self.authorized = True
        return BOARD

    async def open(self, device, baudrate):
        if self.open_error is not None:
            raise self.open_error
        self.opened.append(device)
        reader, writer = FakeReader(), FakeWriter()
        self.readers.append(reader)
        self.writers.append(writer)
        return reader, writer

    def subscribe_disconnect(self, callback) -> None:
        self.disconnect_callbacks.append(callback)

    def subscribe_connect(self, callback) -> None:
        self.connect_callbacks.append(callback)

    async def unplug(self) -> None:
        self.attached = False
        for callback in self.disconnect_callbacks:
            await callback(BOARD)

    @property
    def reader(self) -> FakeReader:
        return self.readers[-1]

    @property
    def writer(self) -> FakeWriter:
        return self.writers[-1]


class RecordingDisplay:
    """Display sink that records snapshots and sounds."""

    def __init__(self) -> None:
        self.states = []
        self.sounds: list[str] = []

    async def publish_state(self, snapshot) -> None:
        self.states.append(snapshot)

    async def play_sound(self, sound: str) -> None:
        self.sounds.append(sound)


class FakeMinter:
    """Receipt minter returning a fixed result or raising ``error``."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def mint_receipt(self, merchant_address: str, payer_address: str) -> MintResult:
        self.calls.append((merchant_address, payer_address))
        if self.error is not None:
            raise self.error
        return MintResult.minted("0xreceipt")


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def display():
    return RecordingDisplay()


@pytest.fixture
def minter():
    return FakeMinter()
