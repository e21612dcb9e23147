"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Value Objects
- Retry policy
"""

from .exceptions import (
    KioskError,
    DeviceError,
    DeviceConnectionError,
    DeviceNotFoundError,
    DevicePermissionRequired,
    LedgerError,
    ChainQueryError,
    MalformedTransactionError,
    SessionError,
    InvalidTransitionError,
    ConfigurationError,
    RepositoryError,
    RedisConnectionError,
)
from .interfaces import (
    LedgerReader,
    SerialTransport,
    ReceiptMinter,
    DisplaySink,
)
from .value_objects import (
    View,
    SuccessPhase,
    ConnectionState,
    AssetMode,
    ChainTransaction,
    LedgerBlock,
    WatchWindow,
    TransferMatch,
    UsbDeviceFilter,
    SerialDeviceInfo,
    MintResult,
    DisplaySnapshot,
)
from .backoff import ExponentialBackoff


__all__ = [
    # Exceptions
    "KioskError",
    "DeviceError",
    "DeviceConnectionError",
    "DeviceNotFoundError",
    "DevicePermissionRequired",
    "LedgerError",
    "ChainQueryError",
    "MalformedTransactionError",
    "SessionError",
    "InvalidTransitionError",
    "ConfigurationError",
    "RepositoryError",
    "RedisConnectionError",
    # Interfaces
    "LedgerReader",
    "SerialTransport",
    "ReceiptMinter",
    "DisplaySink",
    # Value Objects
    "View",
    "SuccessPhase",
    "ConnectionState",
    "AssetMode",
    "ChainTransaction",
    "LedgerBlock",
    "WatchWindow",
    "TransferMatch",
    "UsbDeviceFilter",
    "SerialDeviceInfo",
    "MintResult",
    "DisplaySnapshot",
    # Retry policy
    "ExponentialBackoff",
]
