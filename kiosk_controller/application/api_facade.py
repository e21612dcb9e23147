"""
API Facade - Unified interface for the kiosk.

Wires the session controller, the device link and the infrastructure
adapters together and exposes the operations the command channel calls.
"""

import asyncio
from typing import Any, Optional

from redis.asyncio import Redis

from core.exceptions import DeviceError, InvalidTransitionError, KioskError
from core.interfaces import DisplaySink, LedgerReader, ReceiptMinter
from core.value_objects import AssetMode
from domain.payment_request import build_payment_uri, describe_price
from domain.session_state_machine import Transition
from domain.transfer_matcher import MatchRule
from event_system import EventConsumer, EventPublisher
from infrastructure.display_publisher import FrontendDisplay
from infrastructure.ledger_client import JsonRpcLedgerClient
from infrastructure.receipt_minter import HttpReceiptMinter
from infrastructure.redis_repository import AuthorizedDeviceRepository, DisplayStateRepository
from infrastructure.serial_transport import UsbSerialTransport
from infrastructure.settings import Settings, get_settings
from loggers import logger

from application.device_link import DeviceLink
from application.session_controller import SessionController


def build_match_rule(settings: Settings) -> MatchRule:
    """Payment rule from the configured mode."""
    payment = settings.payment
    if payment.mode == AssetMode.TOKEN:
        return MatchRule.token(
            merchant_address=payment.merchant_address,
            required_amount=payment.required_amount,
            token_contract=payment.token_contract,
        )
    return MatchRule.native(
        merchant_address=payment.merchant_address,
        required_amount=payment.required_amount,
        strict=payment.strict_native,
    )


class KioskFacade:
    """
    Facade for the kiosk API.

    Adapters default to the production implementations and can be replaced
    (tests pass fakes).
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        settings: Optional[Settings] = None,
        ledger: Optional[LedgerReader] = None,
        transport: Optional[Any] = None,
        minter: Optional[ReceiptMinter] = None,
        display: Optional[DisplaySink] = None,
    ) -> None:
        """
        Initialize the kiosk facade.

        Args:
            redis: Redis client (required for the default transport/display).
            settings: Application settings.
            ledger: Ledger reader.
            transport: Serial transport.
            minter: Receipt minter.
            display: Presentation sink.
        """
        self._settings = settings or get_settings()
        self._redis = redis
        s = self._settings

        self.rule = build_match_rule(s)
        self.payment_uri = build_payment_uri(self.rule, s.ledger.chain_id)
        self.price = describe_price(self.rule, s.payment.token_decimals, s.payment.token_symbol)

        self._ledger = ledger or JsonRpcLedgerClient(
            s.ledger.rpc_url, timeout=s.ledger.request_timeout_sec
        )
        self._transport = transport or UsbSerialTransport(
            AuthorizedDeviceRepository(redis),
            list(s.serial.allowed_devices),
            monitor_interval=s.serial.monitor_interval_sec,
        )
        self._minter = minter or HttpReceiptMinter(s.minting)
        self._display = display or FrontendDisplay(
            DisplayStateRepository(redis, key=s.services.display_key) if redis else None,
            s.services.websocket_url,
        )

        # Event system
        self._event_queue: asyncio.Queue = asyncio.Queue()
        self._event_publisher = EventPublisher(self._event_queue)
        self._event_consumer = EventConsumer(self._event_queue)

        self.device_link = DeviceLink(
            self._transport,
            list(s.serial.allowed_devices),
            self._event_publisher,
            baudrate=s.serial.baudrate,
            reconnect_delay=s.serial.reconnect_delay_sec,
            command_queue_size=s.serial.command_queue_size,
        )
        self.controller = SessionController(
            ledger=self._ledger,
            rule=self.rule,
            publisher=self._event_publisher,
            consumer=self._event_consumer,
            display=self._display,
            minter=self._minter,
            device_link=self.device_link,
            timing=s.timing,
            payment_uri=self.payment_uri,
        )

        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> dict[str, Any]:
        """
        Start the controller and try a silent reconnect to the board.

        A missing board is not fatal; the kiosk runs and reports
        ``needs_permission``.
        """
        if self._is_initialized:
            return {"success": True, "message": "Already initialized"}

        if not self._settings.minting.is_configured:
            logger.warning("Receipt minting is not configured, receipts are disabled")

        await self.controller.start()

        start_monitor = getattr(self._transport, "start_monitor", None)
        if start_monitor is not None:
            await start_monitor()

        connected = await self.device_link.start()
        self._is_initialized = True

        logger.info(f"Kiosk ready: {self.price} to {self.rule.merchant_address}")
        return {
            "success": True,
            "message": "Kiosk initialized",
            "data": {"device_connected": connected},
        }

    async def shutdown(self) -> None:
        """Stop the controller, the link and the adapters."""
        try:
            await self.controller.stop()
            await self.device_link.stop()

            stop_monitor = getattr(self._transport, "stop_monitor", None)
            if stop_monitor is not None:
                await stop_monitor()

            close = getattr(self._ledger, "close", None)
            if close is not None:
                await close()

            self._is_initialized = False
            logger.info("Kiosk shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    # =========================================================================
    # Session Operations
    # =========================================================================

    async def start_payment(self) -> dict[str, Any]:
        """Enter the payment view."""
        transition = await self.controller.start_payment()
        if not transition.accepted:
            return self._rejected(transition)
        return {
            "success": True,
            "message": "Payment started",
            "data": self.controller.snapshot().to_dict(),
        }

    async def cancel_payment(self) -> dict[str, Any]:
        """Leave the payment view."""
        transition = await self.controller.cancel("cancelled by user")
        if not transition.accepted:
            return self._rejected(transition)
        return {"success": True, "message": "Payment cancelled"}

    def _rejected(self, transition: Transition) -> dict[str, Any]:
        error = InvalidTransitionError(transition.reason, view=self.controller.machine.view.value)
        logger.info(f"Command rejected: {error.message}")
        return {"success": False, "message": error.message, "data": error.to_dict()}

    # =========================================================================
    # Device Operations
    # =========================================================================

    async def authorize_device(self) -> dict[str, Any]:
        """Authorize the attached controller board and connect to it."""
        try:
            connected = await self.device_link.authorize_and_connect()
        except DeviceError as e:
            logger.warning(f"Device authorization failed: {e.message}")
            return {"success": False, "message": e.message, "data": e.to_dict()}
        except KioskError as e:
            logger.error(f"Device authorization error: {e.message}")
            return {"success": False, "message": e.message, "data": e.to_dict()}

        await self.controller.publish_snapshot()
        if not connected:
            return {"success": False, "message": "Device authorized but could not be opened"}
        return {"success": True, "message": "Device connected"}

    # =========================================================================
    # Status
    # =========================================================================

    async def kiosk_status(self) -> dict[str, Any]:
        """Current display state plus counters."""
        data = self.controller.snapshot().to_dict()
        data["completed_payments"] = self.controller.machine.session.completed_payments
        data["watcher_failures"] = self.controller.watcher.consecutive_failures
        return {"success": True, "data": data}

    async def payment_request(self) -> dict[str, Any]:
        """Payment URI and price shown on the landing and payment views."""
        s = self._settings
        return {
            "success": True,
            "data": {
                "uri": self.payment_uri,
                "price": self.price,
                "mode": self.rule.mode.value,
                "merchant_address": self.rule.merchant_address,
                "token_contract": self.rule.token_contract,
                "required_amount": str(self.rule.required_amount),
                "chain_id": s.ledger.chain_id,
            },
        }
