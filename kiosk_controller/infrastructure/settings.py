"""
Application settings.

Provides typed configuration sections with environment variable overrides.
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Final, Mapping, Optional, TypeVar

from core.exceptions import ConfigurationError
from core.value_objects import AssetMode, UsbDeviceFilter, normalize_address


T = TypeVar("T")

ENV_PREFIX: Final[str] = "KIOSK_"


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    decode_responses: bool = True


@dataclass(frozen=True)
class LedgerSettings:
    """JSON-RPC ledger provider settings."""

    rpc_url: str = "https://ethereum-sepolia-rpc.publicnode.com"
    chain_id: int = 11155111  # Sepolia
    request_timeout_sec: float = 10.0


@dataclass(frozen=True)
class PaymentSettings:
    """What counts as a payment, and where commands arrive."""

    mode: AssetMode = AssetMode.NATIVE
    merchant_address: str = "0x35321cc55704948ee8c79f3c03cd0fcb055a3ac0"
    required_amount: int = 1_000_000_000_000_000  # 0.001 ETH in wei
    token_contract: Optional[str] = None
    token_symbol: str = "USDC"
    token_decimals: int = 6
    strict_native: bool = True
    command_channel: str = "kiosk_commands"

    @property
    def response_channel(self) -> str:
        """Get response channel name."""
        return f"{self.command_channel}_response"


@dataclass(frozen=True)
class TimingSettings:
    """Session and polling durations, in seconds."""

    payment_timeout_sec: int = 60
    success_duration_sec: int = 10
    message_duration_sec: float = 5.0
    tick_interval_sec: float = 1.0
    poll_interval_sec: float = 3.0
    lookback_blocks: int = 10
    backoff_max_sec: float = 30.0


@dataclass(frozen=True)
class SerialSettings:
    """Serial controller board settings."""

    baudrate: int = 9600
    allowed_devices: tuple[UsbDeviceFilter, ...] = (
        UsbDeviceFilter(0x2341, 0x0043),  # Arduino Uno
        UsbDeviceFilter(0x2341, 0x0001),  # Arduino Uno (old)
        UsbDeviceFilter(0x1A86, 0x7523),  # CH340 clones
    )
    reconnect_delay_sec: float = 1.0
    monitor_interval_sec: float = 2.0
    command_queue_size: int = 8


@dataclass(frozen=True)
class MintingSettings:
    """Receipt minting service settings."""

    service_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_sec: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.service_url and self.api_key)


@dataclass(frozen=True)
class ServiceSettings:
    """External service URLs."""

    websocket_url: str = "ws://localhost:8005/ws"
    display_key: str = "kiosk:display"


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    redis: RedisSettings = field(default_factory=RedisSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    payment: PaymentSettings = field(default_factory=PaymentSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)
    serial: SerialSettings = field(default_factory=SerialSettings)
    minting: MintingSettings = field(default_factory=MintingSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``KIOSK_*`` environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a variable cannot be parsed.
        """
        env = os.environ if env is None else env
        read = _EnvReader(env)

        redis_defaults = RedisSettings()
        ledger_defaults = LedgerSettings()
        payment_defaults = PaymentSettings()
        timing_defaults = TimingSettings()
        serial_defaults = SerialSettings()
        minting_defaults = MintingSettings()
        services_defaults = ServiceSettings()

        mode = read("PAYMENT_MODE", lambda v: AssetMode(v.lower()), payment_defaults.mode)
        token_contract = read("TOKEN_CONTRACT", normalize_address, payment_defaults.token_contract)
        if mode == AssetMode.TOKEN and not token_contract:
            raise ConfigurationError(
                "Token payment mode requires a token contract address",
                setting=f"{ENV_PREFIX}TOKEN_CONTRACT",
            )

        return cls(
            redis=RedisSettings(
                host=read("REDIS_HOST", str, redis_defaults.host),
                port=read("REDIS_PORT", int, redis_defaults.port),
            ),
            ledger=LedgerSettings(
                rpc_url=read("RPC_URL", str, ledger_defaults.rpc_url),
                chain_id=read("CHAIN_ID", int, ledger_defaults.chain_id),
                request_timeout_sec=read(
                    "RPC_TIMEOUT", float, ledger_defaults.request_timeout_sec
                ),
            ),
            payment=PaymentSettings(
                mode=mode,
                merchant_address=read(
                    "MERCHANT_ADDRESS", normalize_address, payment_defaults.merchant_address
                ),
                required_amount=read("REQUIRED_AMOUNT", int, payment_defaults.required_amount),
                token_contract=token_contract,
                token_symbol=read("TOKEN_SYMBOL", str, payment_defaults.token_symbol),
                token_decimals=read("TOKEN_DECIMALS", int, payment_defaults.token_decimals),
                strict_native=read("STRICT_NATIVE", _parse_bool, payment_defaults.strict_native),
                command_channel=read(
                    "COMMAND_CHANNEL", str, payment_defaults.command_channel
                ),
            ),
            timing=TimingSettings(
                payment_timeout_sec=read(
                    "PAYMENT_TIMEOUT", int, timing_defaults.payment_timeout_sec
                ),
                success_duration_sec=read(
                    "SUCCESS_DURATION", int, timing_defaults.success_duration_sec
                ),
                message_duration_sec=read(
                    "MESSAGE_DURATION", float, timing_defaults.message_duration_sec
                ),
                tick_interval_sec=read("TICK_INTERVAL", float, timing_defaults.tick_interval_sec),
                poll_interval_sec=read(
                    "POLL_INTERVAL", float, timing_defaults.poll_interval_sec
                ),
                lookback_blocks=read("LOOKBACK_BLOCKS", int, timing_defaults.lookback_blocks),
                backoff_max_sec=read("BACKOFF_MAX", float, timing_defaults.backoff_max_sec),
            ),
            serial=SerialSettings(
                baudrate=read("SERIAL_BAUDRATE", int, serial_defaults.baudrate),
                allowed_devices=read(
                    "SERIAL_DEVICES", _parse_device_filters, serial_defaults.allowed_devices
                ),
                reconnect_delay_sec=read(
                    "RECONNECT_DELAY", float, serial_defaults.reconnect_delay_sec
                ),
                monitor_interval_sec=read(
                    "MONITOR_INTERVAL", float, serial_defaults.monitor_interval_sec
                ),
                command_queue_size=read(
                    "COMMAND_QUEUE_SIZE", int, serial_defaults.command_queue_size
                ),
            ),
            minting=MintingSettings(
                service_url=read("MINT_URL", str, minting_defaults.service_url),
                api_key=read("MINT_API_KEY", str, minting_defaults.api_key),
                timeout_sec=read("MINT_TIMEOUT", float, minting_defaults.timeout_sec),
            ),
            services=ServiceSettings(
                websocket_url=read("WS_URL", str, services_defaults.websocket_url),
                display_key=read("DISPLAY_KEY", str, services_defaults.display_key),
            ),
        )


# =============================================================================
# Parsing Helpers
# =============================================================================


class _EnvReader:
    """Reads prefixed variables and converts them, keeping defaults for unset ones."""

    def __init__(self, env: Mapping[str, str]) -> None:
        self._env = env

    def __call__(self, name: str, convert: Callable[[str], T], default: T) -> T:
        key = f"{ENV_PREFIX}{name}"
        raw = self._env.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return convert(raw.strip())
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {key}: {raw!r}", setting=key) from e


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_device_filters(value: str) -> tuple[UsbDeviceFilter, ...]:
    """Parse ``"2341:0043,1a86:7523"`` into filters."""
    filters = []
    for item in value.split(","):
        vendor, _, product = item.strip().partition(":")
        filters.append(UsbDeviceFilter(int(vendor, 16), int(product, 16)))
    return tuple(filters)


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests)."""
    global _settings
    _settings = None
