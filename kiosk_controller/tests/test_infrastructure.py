"""
Tests for settings and infrastructure adapters.
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from redis.exceptions import ConnectionError as RedisClientConnectionError

from core.exceptions import ConfigurationError, DeviceNotFoundError, RedisConnectionError
from core.value_objects import AssetMode, DisplaySnapshot, SuccessPhase, UsbDeviceFilter, View
from infrastructure.display_publisher import FrontendDisplay
from infrastructure.receipt_minter import HttpReceiptMinter
from infrastructure.redis_repository import AuthorizedDeviceRepository, DisplayStateRepository
from infrastructure.serial_transport import UsbSerialTransport
from infrastructure.settings import MintingSettings, Settings, get_settings, reset_settings
from send_to_ws import DEFAULT_OPEN_TIMEOUT_S, send_to_ws

from conftest import BOARD, MERCHANT, PAYER, TOKEN


# =============================================================================
# Settings Tests
# =============================================================================


class TestSettings:
    """Tests for configuration."""

    def test_defaults(self):
        """Test default settings values."""
        settings = Settings.from_env({})
        assert settings.payment.mode == AssetMode.NATIVE
        assert settings.payment.merchant_address == MERCHANT
        assert settings.payment.required_amount == 10**15
        assert settings.ledger.chain_id == 11155111
        assert settings.timing.payment_timeout_sec == 60
        assert settings.timing.success_duration_sec == 10
        assert settings.timing.poll_interval_sec == 3.0
        assert settings.timing.lookback_blocks == 10
        assert settings.serial.baudrate == 9600
        assert settings.serial.command_queue_size == 8
        assert UsbDeviceFilter(0x1A86, 0x7523) in settings.serial.allowed_devices
        assert not settings.minting.is_configured

    def test_response_channel(self):
        """Test the response channel is derived from the command channel."""
        assert Settings.from_env({}).payment.response_channel == "kiosk_commands_response"

    def test_env_overrides(self):
        """Test KIOSK_* variables override defaults."""
        settings = Settings.from_env(
            {
                "KIOSK_PAYMENT_MODE": "TOKEN",
                "KIOSK_TOKEN_CONTRACT": TOKEN,
                "KIOSK_REQUIRED_AMOUNT": "1500000",
                "KIOSK_PAYMENT_TIMEOUT": "90",
                "KIOSK_STRICT_NATIVE": "off",
                "KIOSK_SERIAL_DEVICES": "2341:0043, 10c4:ea60",
                "KIOSK_MINT_URL": "https://mint.test/receipt",
                "KIOSK_MINT_API_KEY": "secret",
                "KIOSK_MINT_TIMEOUT": "12.5",
                "KIOSK_TICK_INTERVAL": "0.5",
                "KIOSK_BACKOFF_MAX": "60",
                "KIOSK_RECONNECT_DELAY": "2.5",
                "KIOSK_MONITOR_INTERVAL": "4",
                "KIOSK_COMMAND_QUEUE_SIZE": "16",
                "KIOSK_DISPLAY_KEY": "kiosk:lobby:display",
            }
        )
        assert settings.payment.mode == AssetMode.TOKEN
        assert settings.payment.token_contract == TOKEN
        assert settings.payment.required_amount == 1_500_000
        assert settings.timing.payment_timeout_sec == 90
        assert settings.payment.strict_native is False
        assert settings.serial.allowed_devices == (
            UsbDeviceFilter(0x2341, 0x0043),
            UsbDeviceFilter(0x10C4, 0xEA60),
        )
        assert settings.minting.is_configured
        assert settings.minting.timeout_sec == 12.5
        assert settings.timing.tick_interval_sec == 0.5
        assert settings.timing.backoff_max_sec == 60.0
        assert settings.serial.reconnect_delay_sec == 2.5
        assert settings.serial.monitor_interval_sec == 4.0
        assert settings.serial.command_queue_size == 16
        assert settings.services.display_key == "kiosk:lobby:display"

    def test_token_mode_requires_contract(self):
        """Test token mode without a contract is a configuration error."""
        with pytest.raises(ConfigurationError):
            Settings.from_env({"KIOSK_PAYMENT_MODE": "token"})

    def test_invalid_value(self):
        """Test unparsable values name the variable."""
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env({"KIOSK_PAYMENT_TIMEOUT": "soon"})
        assert exc_info.value.details["setting"] == "KIOSK_PAYMENT_TIMEOUT"

    def test_invalid_merchant(self):
        """Test a malformed merchant address is rejected."""
        with pytest.raises(ConfigurationError):
            Settings.from_env({"KIOSK_MERCHANT_ADDRESS": "0x1234"})

    def test_singleton(self):
        """Test get_settings caches until reset."""
        reset_settings()
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first
        reset_settings()


# =============================================================================
# Redis Repository Tests
# =============================================================================


class TestRedisRepositories:
    """Tests for Redis-backed state."""

    @pytest.mark.asyncio
    async def test_authorized_devices(self):
        """Test devices are remembered by identity."""
        redis = MagicMock()
        redis.sadd = AsyncMock()
        redis.smembers = AsyncMock(return_value={BOARD.identity})
        repo = AuthorizedDeviceRepository(redis)

        await repo.authorize(BOARD)

        redis.sadd.assert_awaited_once_with("kiosk:authorized_devices", BOARD.identity)
        assert await repo.is_authorized(BOARD)

    @pytest.mark.asyncio
    async def test_redis_errors_wrapped(self):
        """Test client errors surface as RedisConnectionError."""
        redis = MagicMock()
        redis.smembers = AsyncMock(side_effect=RedisClientConnectionError("down"))

        with pytest.raises(RedisConnectionError):
            await AuthorizedDeviceRepository(redis).identities()

    @pytest.mark.asyncio
    async def test_display_state_flattened(self):
        """Test snapshots are stored as a flat string hash."""
        redis = MagicMock()
        redis.hset = AsyncMock()
        repo = DisplayStateRepository(redis)

        await repo.save(
            DisplaySnapshot(
                view=View.SUCCESS,
                success_phase=SuccessPhase.TIMER,
                time_left_sec=0,
                success_time_left_sec=9,
                tx_hash=None,
                relay_active=True,
            )
        )

        mapping = redis.hset.await_args.kwargs["mapping"]
        assert redis.hset.await_args.args == ("kiosk:display",)
        assert mapping["view"] == "success"
        assert mapping["relay_active"] == "1"
        assert mapping["tx_hash"] == ""
        assert mapping["success_time_left_sec"] == "9"


# =============================================================================
# Display Tests
# =============================================================================


def snapshot(**overrides):
    data = dict(view=View.LANDING, success_phase=SuccessPhase.TIMER, time_left_sec=0, success_time_left_sec=0)
    data.update(overrides)
    return DisplaySnapshot(**data)


class TestFrontendDisplay:
    """Tests for the presentation sink."""

    @pytest.mark.asyncio
    async def test_publishes_state_once_per_change(self):
        """Test identical snapshots are not re-sent."""
        sender = AsyncMock(return_value=True)
        repo = MagicMock()
        repo.save = AsyncMock()
        display = FrontendDisplay(repo, "ws://test", sender=sender)

        await display.publish_state(snapshot())
        await display.publish_state(snapshot())
        await display.publish_state(snapshot(view=View.PAYMENT, time_left_sec=60))

        assert sender.await_count == 2
        event, url, data = sender.await_args.args
        assert event == "kiosk_state"
        assert url == "ws://test"
        assert data["view"] == "payment"
        assert repo.save.await_count == 2

    @pytest.mark.asyncio
    async def test_repository_failure_still_sends(self):
        """Test a Redis failure does not stop the WebSocket push."""
        sender = AsyncMock(return_value=True)
        repo = MagicMock()
        repo.save = AsyncMock(side_effect=RedisConnectionError("down"))
        display = FrontendDisplay(repo, "ws://test", sender=sender)

        await display.publish_state(snapshot())

        sender.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_play_sound(self):
        """Test sounds are sent as play_sound events."""
        sender = AsyncMock(return_value=True)
        display = FrontendDisplay(None, "ws://test", sender=sender)

        await display.play_sound("success")

        sender.assert_awaited_once_with("play_sound", "ws://test", {"sound": "success"})


class TestSendToWs:
    """Tests for the WebSocket bridge client."""

    @pytest.mark.asyncio
    async def test_sends_json_event(self):
        """Test the event is sent as one JSON message with a bounded handshake."""
        ws = AsyncMock()
        connect = MagicMock()
        connect.return_value.__aenter__.return_value = ws

        with patch("send_to_ws.websockets.connect", connect):
            sent = await send_to_ws("kiosk_state", "ws://test", {"view": "payment"})

        assert sent
        connect.assert_called_once_with("ws://test", open_timeout=DEFAULT_OPEN_TIMEOUT_S)
        assert json.loads(ws.send.await_args.args[0]) == {"event": "kiosk_state", "data": {"view": "payment"}}

    @pytest.mark.asyncio
    async def test_handshake_timeout_reported(self):
        """Test an unresponsive bridge returns False instead of raising."""
        connect = MagicMock(side_effect=asyncio.TimeoutError())

        with patch("send_to_ws.websockets.connect", connect):
            assert not await send_to_ws("kiosk_state", "ws://test", open_timeout=0.1)

    @pytest.mark.asyncio
    async def test_unreachable_bridge_reported(self):
        """Test a refused connection returns False."""
        connect = MagicMock(side_effect=ConnectionRefusedError("refused"))

        with patch("send_to_ws.websockets.connect", connect):
            assert not await send_to_ws("play_sound", "ws://test", {"sound": "success"})


# =============================================================================
# Receipt Minter Tests
# =============================================================================


class TestHttpReceiptMinter:
    """Tests for the minting service client."""

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self):
        """Test a missing URL or key is a configuration error."""
        with pytest.raises(ConfigurationError):
            await HttpReceiptMinter(MintingSettings()).mint_receipt(MERCHANT, PAYER)
        with pytest.raises(ConfigurationError):
            await HttpReceiptMinter(MintingSettings(service_url="https://mint.test")).mint_receipt(
                MERCHANT, PAYER
            )

    @pytest.mark.asyncio
    async def test_minted(self):
        """Test a successful mint posts merchant and payer with the API key."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"success": True, "hash": "0xreceipt"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        minter = HttpReceiptMinter(
            MintingSettings(service_url="https://mint.test/receipt", api_key="k"), client=client
        )

        result = await minter.mint_receipt(MERCHANT, PAYER)

        assert result.success
        assert result.tx_hash == "0xreceipt"
        body = json.loads(requests[0].content)
        assert body["merchant"] == MERCHANT
        assert body["payer"] == PAYER
        assert requests[0].headers["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_rejected(self):
        """Test a service-side failure is reported, not raised."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"success": False, "error": "Minting failed"})
            )
        )
        minter = HttpReceiptMinter(MintingSettings(service_url="https://mint.test", api_key="k"), client=client)

        result = await minter.mint_receipt(MERCHANT, PAYER)

        assert not result.success
        assert result.error == "Minting failed"

    @pytest.mark.asyncio
    async def test_http_error_reported(self):
        """Test HTTP errors become failed results."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        minter = HttpReceiptMinter(MintingSettings(service_url="https://mint.test", api_key="k"), client=client)

        result = await minter.mint_receipt(MERCHANT, PAYER)

        assert not result.success


# =============================================================================
# Serial Transport Tests
# =============================================================================


def port(device, vid, pid, serial_number):
    return SimpleNamespace(device=device, vid=vid, pid=pid, serial_number=serial_number)


class TestUsbSerialTransport:
    """Tests for port discovery and the hot-plug monitor."""

    FILTERS = [UsbDeviceFilter(0x2341, 0x0043)]

    def make(self, ports, authorized=()):
        repo = MagicMock()
        repo.identities = AsyncMock(return_value=set(authorized))
        repo.authorize = AsyncMock()
        return UsbSerialTransport(repo, self.FILTERS, comports=lambda: list(ports)), repo

    @pytest.mark.asyncio
    async def test_scan_filters_by_usb_ids(self):
        """Test only allow-listed vendor/product pairs are reported."""
        transport, _ = self.make(
            [port("/dev/ttyACM0", 0x2341, 0x0043, "A1"), port("/dev/ttyS0", None, None, None)]
        )
        assert [d.path for d in await transport.scan_ports(self.FILTERS)] == ["/dev/ttyACM0"]

    @pytest.mark.asyncio
    async def test_only_authorized_listed(self):
        """Test silent reconnect only sees authorized boards."""
        ports = [port("/dev/ttyACM0", 0x2341, 0x0043, "A1")]
        transport, _ = self.make(ports)
        assert await transport.list_authorized_devices(self.FILTERS) == []

        transport, _ = self.make(ports, authorized={BOARD.identity})
        assert await transport.list_authorized_devices(self.FILTERS) == [BOARD]

    @pytest.mark.asyncio
    async def test_authorization_persists(self):
        """Test authorizing stores the board identity."""
        transport, repo = self.make([port("/dev/ttyACM0", 0x2341, 0x0043, "A1")])

        device = await transport.request_new_device_authorization(self.FILTERS)

        assert device == BOARD
        repo.authorize.assert_awaited_once_with(BOARD)

    @pytest.mark.asyncio
    async def test_authorization_without_board(self):
        """Test authorization fails when nothing matching is attached."""
        transport, _ = self.make([])
        with pytest.raises(DeviceNotFoundError):
            await transport.request_new_device_authorization(self.FILTERS)

    @pytest.mark.asyncio
    async def test_monitor_fires_callbacks(self):
        """Test removal and re-attachment of an authorized board fire callbacks."""
        ports = [port("/dev/ttyACM0", 0x2341, 0x0043, "A1")]
        transport, _ = self.make(ports, authorized={BOARD.identity})
        on_disconnect, on_connect = AsyncMock(), AsyncMock()
        transport.subscribe_disconnect(on_disconnect)
        transport.subscribe_connect(on_connect)
        transport._known = {BOARD.path: BOARD}

        ports.clear()
        await transport.poll_changes()
        ports.append(port("/dev/ttyACM0", 0x2341, 0x0043, "A1"))
        await transport.poll_changes()

        on_disconnect.assert_awaited_once_with(BOARD)
        on_connect.assert_awaited_once_with(BOARD)
