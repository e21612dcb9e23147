"""
Value Objects for the kiosk controller.

Immutable objects that represent values in the domain.
Value objects are compared by value, not by identity.
"""

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from core.exceptions import MalformedTransactionError


# =============================================================================
# Enums
# =============================================================================


class View(str, Enum):
    """Top-level screen shown by the kiosk."""

    LANDING = "landing"
    PAYMENT = "payment"
    SUCCESS = "success"


class SuccessPhase(str, Enum):
    """Sub-phase of the success view."""

    TIMER = "timer"
    MESSAGE = "message"


class ConnectionState(str, Enum):
    """Lifecycle state of the serial device connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class AssetMode(str, Enum):
    """Which kind of transfer counts as a payment."""

    NATIVE = "native"
    TOKEN = "token"


# =============================================================================
# Address / Hex Helpers
# =============================================================================

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(value: Any) -> str:
    """
    Normalize an account address to lowercase 0x-prefixed hex.

    Raises:
        ValueError: If the value is not a 20-byte hex address.
    """
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def hex_to_int(value: Any) -> int:
    """Parse a JSON-RPC quantity ("0x1a") into an int."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"Invalid quantity: {value!r}")
    digits = value[2:]
    return int(digits, 16) if digits else 0


def hex_to_bytes(value: Any) -> bytes:
    """Parse JSON-RPC data ("0xa9059cbb...") into bytes."""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"Invalid data: {value!r}")
    return bytes.fromhex(value[2:])


# =============================================================================
# Ledger Records
# =============================================================================


@dataclass(frozen=True)
class ChainTransaction:
    """
    Validated transaction record read from the ledger.

    Attributes:
        hash: Transaction hash (0x-prefixed hex).
        from_address: Sender address, lowercase.
        to_address: Recipient address, lowercase; None for contract creation.
        value: Native value in base units (wei).
        calldata: Raw input bytes.
    """

    hash: str
    from_address: str
    to_address: Optional[str]
    value: int
    calldata: bytes = b""

    @classmethod
    def from_rpc(cls, raw: Any) -> "ChainTransaction":
        """
        Build a transaction from an ``eth_getBlockByNumber`` entry.

        Raises:
            MalformedTransactionError: If a required field is missing or invalid.
        """
        if not isinstance(raw, dict):
            raise MalformedTransactionError(f"Transaction is not an object: {raw!r}")

        try:
            tx_hash = raw["hash"]
            if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
                raise ValueError(f"Invalid hash: {tx_hash!r}")
            to_raw = raw.get("to")
            return cls(
                hash=tx_hash.lower(),
                from_address=normalize_address(raw["from"]),
                to_address=normalize_address(to_raw) if to_raw else None,
                value=hex_to_int(raw.get("value", "0x0")),
                calldata=hex_to_bytes(raw.get("input", "0x")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedTransactionError(
                f"Malformed transaction {raw.get('hash')}: {e}",
                details={"hash": raw.get("hash")},
            ) from e


@dataclass(frozen=True)
class LedgerBlock:
    """A block with its validated transactions in native order."""

    height: int
    transactions: tuple[ChainTransaction, ...] = ()


@dataclass(frozen=True)
class WatchWindow:
    """
    Inclusive block-height range scanned on one poll tick.

    Attributes:
        from_block: Lowest height scanned, never below the session start.
        to_block: Current head height.
    """

    from_block: int
    to_block: int

    @classmethod
    def compute(cls, start_block: int, head: int, lookback: int) -> "WatchWindow":
        """Window ``[max(start_block, head - lookback), head]``."""
        return cls(from_block=max(start_block, head - lookback), to_block=head)

    def heights_descending(self) -> range:
        """Heights from newest to oldest."""
        return range(self.to_block, self.from_block - 1, -1)

    def __len__(self) -> int:
        return max(0, self.to_block - self.from_block + 1)


@dataclass(frozen=True)
class TransferMatch:
    """A transaction that satisfied the payment rule."""

    tx_hash: str
    payer_address: str
    recipient_address: str
    amount: int
    block_height: int


# =============================================================================
# Serial Devices
# =============================================================================


@dataclass(frozen=True)
class UsbDeviceFilter:
    """USB vendor/product identifier pair from the allow-list."""

    vendor_id: int
    product_id: int

    def matches(self, vendor_id: Optional[int], product_id: Optional[int]) -> bool:
        return self.vendor_id == vendor_id and self.product_id == product_id

    def __str__(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"


@dataclass(frozen=True)
class SerialDeviceInfo:
    """
    Handle for an attached serial device.

    Attributes:
        path: OS device path (e.g. /dev/ttyACM0).
        vendor_id: USB vendor id.
        product_id: USB product id.
        serial_number: USB serial number, used as the authorization key.
    """

    path: str
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    serial_number: Optional[str] = None

    @property
    def identity(self) -> str:
        """Stable identity used to remember authorization."""
        if self.serial_number:
            return f"{self.vendor_id or 0:04x}:{self.product_id or 0:04x}:{self.serial_number}"
        return self.path


# =============================================================================
# Side Effect Results
# =============================================================================


@dataclass(frozen=True)
class MintResult:
    """Outcome of a receipt mint request."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def minted(cls, tx_hash: Optional[str]) -> "MintResult":
        return cls(success=True, tx_hash=tx_hash)

    @classmethod
    def failed(cls, error: str) -> "MintResult":
        return cls(success=False, error=error)


# =============================================================================
# Display Snapshot
# =============================================================================


@dataclass(frozen=True)
class DisplaySnapshot:
    """
    Read-only display state handed to the presentation layer.

    Attributes:
        view: Current view.
        success_phase: Success sub-phase (only meaningful in success view).
        time_left_sec: Remaining payment time.
        success_time_left_sec: Remaining success countdown.
        tx_hash: Confirmed transaction hash, if any.
        relay_active: Last relay state echoed by the device.
        device_connection_state: Serial link state.
        needs_permission: True if a device must be authorized by the operator.
        status: Short status text for the banner.
        payment_uri: EIP-681 URI rendered as a QR code.
    """

    view: View
    success_phase: SuccessPhase
    time_left_sec: int
    success_time_left_sec: int
    tx_hash: Optional[str] = None
    relay_active: bool = False
    device_connection_state: ConnectionState = ConnectionState.DISCONNECTED
    needs_permission: bool = False
    status: str = ""
    payment_uri: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        data["view"] = self.view.value
        data["success_phase"] = self.success_phase.value
        data["device_connection_state"] = self.device_connection_state.value
        return data
