"""
Tests for the session controller.

Most tests drive the controller by publishing events and draining the queue;
timers are configured long enough that they never fire on their own.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from core.exceptions import ConfigurationError
from core.value_objects import ChainTransaction, ConnectionState, SuccessPhase, TransferMatch, UsbDeviceFilter, View
from application.device_link import DeviceLink
from application.session_controller import SessionController
from domain.transfer_matcher import MatchRule
from event_system import EventConsumer, EventPublisher, EventType
from infrastructure.settings import TimingSettings

from conftest import MERCHANT, PAYER, FakeLedger, FakeMinter, FakeTransport, RecordingDisplay, settle


SLOW = TimingSettings(
    payment_timeout_sec=3,
    success_duration_sec=2,
    message_duration_sec=100,
    tick_interval_sec=100,
    poll_interval_sec=100,
)


def build(ledger=None, transport=None, minter=None, timing=SLOW, display=None):
    queue = asyncio.Queue()
    publisher = EventPublisher(queue)
    link = DeviceLink(
        transport or FakeTransport(),
        [UsbDeviceFilter(0x2341, 0x0043)],
        publisher,
        loop_yield=0,
    )
    display = display or RecordingDisplay()
    controller = SessionController(
        ledger=ledger or FakeLedger(),
        rule=MatchRule.native(MERCHANT, 10**15),
        publisher=publisher,
        consumer=EventConsumer(queue),
        display=display,
        minter=minter or FakeMinter(),
        device_link=link,
        timing=timing,
        payment_uri="ethereum:test",
    )
    return controller, link, display


def match(tx_hash="0xpaid"):
    return TransferMatch(
        tx_hash=tx_hash, payer_address=PAYER, recipient_address=MERCHANT, amount=10**15, block_height=100
    )


async def publish(controller, event_type, **data):
    await controller.publisher.publish(event_type, **data)
    await controller.consumer.drain()


class TestButton:
    """Tests for the hardware button path."""

    @pytest.mark.asyncio
    async def test_chunk_in_landing_starts_payment_and_sets_relay(self):
        """Test one chunk both starts a payment and marks the relay active."""
        transport = FakeTransport()
        controller, link, _ = build(transport=transport)
        await link.start()

        transport.reader.feed_data(b"BUTTON_4_PRESSED\nRELAY_ON_OK\n")
        await settle()
        await controller.consumer.drain()

        assert controller.machine.view == View.PAYMENT
        assert controller.snapshot().relay_active
        await controller.stop()
        await link.stop()

    @pytest.mark.asyncio
    async def test_chunk_in_payment_only_sets_relay(self):
        """Test the button is ignored during payment while the relay still updates."""
        transport = FakeTransport()
        controller, link, _ = build(transport=transport)
        await link.start()
        await publish(controller, EventType.START_PAYMENT)
        await publish(controller, EventType.PAYMENT_TICK, epoch=controller.epoch)
        epoch = controller.epoch

        transport.reader.feed_data(b"BUTTON_4_PRESSED\nRELAY_ON_OK\n")
        await settle()
        await controller.consumer.drain()

        assert controller.machine.view == View.PAYMENT
        assert controller.machine.session.time_left_sec == 2
        assert controller.epoch == epoch
        assert link.relay_active
        await controller.stop()
        await link.stop()


class TestEpochs:
    """Tests for stale event handling."""

    @pytest.mark.asyncio
    async def test_stale_tick_discarded(self):
        """Test a tick from an older epoch does not touch the countdown."""
        controller, _, _ = build()
        await publish(controller, EventType.START_PAYMENT)

        await publish(controller, EventType.PAYMENT_TICK, epoch=controller.epoch - 1)

        assert controller.machine.session.time_left_sec == 3
        await controller.stop()

    @pytest.mark.asyncio
    async def test_countdown_times_out(self):
        """Test the payment countdown returns to landing and stops the watcher."""
        controller, _, _ = build()
        await publish(controller, EventType.START_PAYMENT)
        epoch = controller.epoch

        for _ in range(5):
            await publish(controller, EventType.PAYMENT_TICK, epoch=epoch)

        assert controller.machine.view == View.LANDING
        assert not controller.watcher.is_running
        await controller.stop()

    @pytest.mark.asyncio
    async def test_match_after_cancel_discarded(self):
        """Test a match produced before cancel never confirms the next session."""
        controller, _, _ = build()
        await publish(controller, EventType.START_PAYMENT)
        epoch = controller.epoch
        await publish(controller, EventType.CANCEL_PAYMENT)
        await publish(controller, EventType.START_PAYMENT)

        await publish(controller, EventType.PAYMENT_MATCHED, match=match(), epoch=epoch)

        assert controller.machine.view == View.PAYMENT
        assert controller.machine.session.tx_hash is None
        await controller.stop()


class TestConfirmation:
    """Tests for the success path."""

    @pytest.mark.asyncio
    async def test_end_to_end_payment(self):
        """Test a ledger payment confirms, actuates the relay, mints and plays a sound."""
        ledger = FakeLedger(head=100)
        ledger.add_block(
            100,
            ChainTransaction(hash="0xpaid", from_address=PAYER, to_address=MERCHANT, value=10**15),
        )
        transport = FakeTransport()
        minter = FakeMinter()
        controller, link, display = build(ledger=ledger, transport=transport, minter=minter)
        await link.start()
        await controller.start()

        transition = await controller.start_payment()
        await asyncio.sleep(0.05)

        assert transition.accepted
        session = controller.machine.session
        assert session.view == View.SUCCESS
        assert session.tx_hash == "0xpaid"
        assert session.payer_address == PAYER
        assert transport.writer.written == [b"RELAY_ON\n"]
        assert minter.calls == [(MERCHANT, PAYER)]
        assert display.sounds == ["success"]
        assert display.states[-1].view == View.SUCCESS
        await controller.stop()
        await link.stop()

    @pytest.mark.asyncio
    async def test_rejected_request_reported(self):
        """Test start_payment outside landing reports a rejected transition."""
        controller, _, _ = build()
        await controller.start()

        assert (await controller.start_payment()).accepted
        second = await controller.start_payment()

        assert not second.accepted
        await controller.stop()

    @pytest.mark.asyncio
    async def test_mint_failure_does_not_block(self):
        """Test an unconfigured minter does not prevent the transition."""
        minter = FakeMinter(error=ConfigurationError("Minting service URL is not set"))
        controller, _, _ = build(minter=minter)
        await publish(controller, EventType.START_PAYMENT)

        await publish(controller, EventType.PAYMENT_MATCHED, match=match(), epoch=controller.epoch)
        await settle()

        assert controller.machine.view == View.SUCCESS
        assert len(minter.calls) == 1
        await controller.stop()

    @pytest.mark.asyncio
    async def test_relay_skipped_when_disconnected(self):
        """Test confirmation succeeds without a connected board."""
        controller, link, _ = build(transport=FakeTransport(authorized=False))
        await link.start()
        await publish(controller, EventType.START_PAYMENT)

        await publish(controller, EventType.PAYMENT_MATCHED, match=match(), epoch=controller.epoch)

        assert controller.machine.view == View.SUCCESS
        assert controller.snapshot().device_connection_state == ConnectionState.DISCONNECTED
        assert controller.snapshot().needs_permission
        await controller.stop()

    @pytest.mark.asyncio
    async def test_success_countdown_then_message_then_landing(self):
        """Test success ticks flip to the message phase and the message resets."""
        controller, _, display = build()
        await publish(controller, EventType.START_PAYMENT)
        await publish(controller, EventType.PAYMENT_MATCHED, match=match(), epoch=controller.epoch)

        success_epoch = controller.epoch
        await publish(controller, EventType.SUCCESS_TICK, epoch=success_epoch)
        await publish(controller, EventType.SUCCESS_TICK, epoch=success_epoch)
        assert controller.machine.session.success_phase == SuccessPhase.MESSAGE

        await publish(controller, EventType.SUCCESS_TICK, epoch=success_epoch)
        await publish(controller, EventType.MESSAGE_ELAPSED, epoch=controller.epoch)
        await settle()

        assert controller.machine.view == View.LANDING
        assert display.states[-1].view == View.LANDING
        assert display.states[-1].payment_uri == "ethereum:test"
        await controller.stop()


class TestWatcherEvents:
    """Tests for watcher callbacks routed through the queue."""

    @pytest.mark.asyncio
    async def test_seed_recorded(self):
        """Test the watcher's first head fetch seeds the session start block."""
        ledger = FakeLedger(head=4242)
        controller, _, _ = build(ledger=ledger)
        await publish(controller, EventType.START_PAYMENT)

        await settle()
        await controller.consumer.drain()

        assert controller.machine.session.start_block_height == 4242
        assert controller.machine.session.status == "Monitoring blockchain..."
        await controller.stop()


class SlowDisplay(RecordingDisplay):
    """Display sink that takes a while to accept each snapshot."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def publish_state(self, snapshot) -> None:
        await asyncio.sleep(self.delay)
        await super().publish_state(snapshot)


class TestDisplay:
    """Tests for presentation updates."""

    @pytest.mark.asyncio
    async def test_slow_display_does_not_stretch_countdown(self):
        """Test the payment countdown runs on time while the display lags."""
        fast = TimingSettings(
            payment_timeout_sec=3,
            success_duration_sec=2,
            message_duration_sec=100,
            tick_interval_sec=0.05,
            poll_interval_sec=100,
        )
        display = SlowDisplay(delay=0.3)
        controller, _, _ = build(timing=fast, display=display)
        await controller.start()

        assert (await controller.start_payment()).accepted
        await asyncio.sleep(0.6)

        assert controller.machine.view == View.LANDING
        await asyncio.sleep(0.7)
        assert display.states[-1].view == View.LANDING
        assert len(display.states) < 6
        await controller.stop()

    @pytest.mark.asyncio
    async def test_display_error_is_contained(self):
        """Test a failing display leaves the session running."""
        controller, _, display = build()
        display.publish_state = AsyncMock(side_effect=RuntimeError("bridge down"))

        await publish(controller, EventType.START_PAYMENT)
        await settle()

        assert controller.machine.view == View.PAYMENT
        display.publish_state.assert_awaited()
        await controller.stop()
