"""
Infrastructure layer - External dependencies and implementations.

Contains:
- Repository implementations (Redis)
- Ledger, serial, minting and display adapters
- Configuration
"""

from .redis_repository import (
    RedisStateRepository,
    AuthorizedDeviceRepository,
    DisplayStateRepository,
)
from .settings import (
    Settings,
    get_settings,
    reset_settings,
)
from .ledger_client import JsonRpcLedgerClient
from .serial_transport import UsbSerialTransport
from .receipt_minter import HttpReceiptMinter
from .display_publisher import FrontendDisplay


__all__ = [
    # Repositories
    "RedisStateRepository",
    "AuthorizedDeviceRepository",
    "DisplayStateRepository",
    # Settings
    "Settings",
    "get_settings",
    "reset_settings",
    # Adapters
    "JsonRpcLedgerClient",
    "UsbSerialTransport",
    "HttpReceiptMinter",
    "FrontendDisplay",
]
