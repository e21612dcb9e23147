"""
Session Controller - Runs the kiosk session on the event loop.

Owns the state machine together with everything that drives it or reacts to
it: the countdown timers, the chain watcher, the device link and the
presentation sink. Every asynchronous source publishes into one event queue;
the controller's consumer applies events one at a time and carries out the
effects each transition asks for.

Events produced under an older session epoch are discarded, so a tick or a
ledger match that races with a cancel never mutates the new session.
"""

import asyncio
from typing import Any, Coroutine, Optional

from core.backoff import ExponentialBackoff
from core.exceptions import ConfigurationError
from core.interfaces import DisplaySink, LedgerReader, ReceiptMinter
from core.value_objects import ConnectionState, DisplaySnapshot, TransferMatch
from domain.line_protocol import OutboundCommand
from domain.session_state_machine import Effect, SessionStateMachine, Transition
from domain.transfer_matcher import MatchRule
from event_system import EventConsumer, EventPublisher, EventType
from infrastructure.settings import TimingSettings
from loggers import logger

from application.chain_watcher import ChainWatcher
from application.device_link import DeviceLink
from application.timers import EventTimer


SUCCESS_SOUND = "success"
REQUEST_TIMEOUT_S = 5.0


class SessionController:
    """
    Kiosk session controller.

    Attributes:
        machine: Session state machine.
        watcher: Chain watcher for the active payment.
        publisher: Publisher for the controller's event queue.
        consumer: Consumer applying events to the session.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        rule: MatchRule,
        publisher: EventPublisher,
        consumer: EventConsumer,
        display: Optional[DisplaySink] = None,
        minter: Optional[ReceiptMinter] = None,
        device_link: Optional[DeviceLink] = None,
        timing: Optional[TimingSettings] = None,
        payment_uri: str = "",
    ) -> None:
        """
        Initialize the controller.

        Args:
            ledger: Ledger reader for the watcher.
            rule: Payment acceptance rule.
            publisher: Publisher for the event queue.
            consumer: Consumer for the same queue.
            display: Presentation sink (optional).
            minter: Receipt minter (optional).
            device_link: Serial link to the controller board (optional).
            timing: Session durations.
            payment_uri: URI shown as a QR code in the payment view.
        """
        timing = timing or TimingSettings()

        self.publisher = publisher
        self.consumer = consumer
        self.device_link = device_link
        self.payment_uri = payment_uri
        self._rule = rule
        self._display = display
        self._minter = minter

        self.machine = SessionStateMachine(
            payment_timeout_sec=timing.payment_timeout_sec,
            success_duration_sec=timing.success_duration_sec,
        )

        self.watcher = ChainWatcher(
            ledger=ledger,
            rule=rule,
            on_match=self._on_watch_match,
            on_seeded=self._on_watch_seeded,
            on_status=self._on_watch_status,
            poll_interval=timing.poll_interval_sec,
            lookback=timing.lookback_blocks,
            backoff=ExponentialBackoff(
                base_delay=timing.poll_interval_sec,
                max_delay=timing.backoff_max_sec,
            ),
        )
        self._watch_epoch = 0

        self._payment_timer = EventTimer(
            "payment", timing.tick_interval_sec, publisher, EventType.PAYMENT_TICK
        )
        self._success_timer = EventTimer(
            "success", timing.tick_interval_sec, publisher, EventType.SUCCESS_TICK
        )
        self._message_timer = EventTimer(
            "message",
            timing.message_duration_sec,
            publisher,
            EventType.MESSAGE_ELAPSED,
            repeat=False,
        )

        self._side_tasks: set[asyncio.Task] = set()
        self._pending_snapshot: Optional[DisplaySnapshot] = None
        self._display_task: Optional[asyncio.Task] = None
        self._register_handlers()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def rule(self) -> MatchRule:
        return self._rule

    @property
    def epoch(self) -> int:
        return self.machine.epoch

    def snapshot(self) -> DisplaySnapshot:
        """Current display state."""
        session = self.machine.session
        link = self.device_link

        return DisplaySnapshot(
            view=session.view,
            success_phase=session.success_phase,
            time_left_sec=session.time_left_sec,
            success_time_left_sec=session.success_time_left_sec,
            tx_hash=session.tx_hash,
            relay_active=link.relay_active if link else False,
            device_connection_state=link.state if link else ConnectionState.DISCONNECTED,
            needs_permission=link.needs_permission if link else False,
            status=session.status,
            payment_uri=self.payment_uri,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start consuming events and publish the initial state."""
        await self.consumer.start_consuming()
        await self.publish_snapshot()
        logger.info("Session controller started")

    async def stop(self) -> None:
        """Stop timers, the watcher and pending side effects."""
        for timer in (self._payment_timer, self._success_timer, self._message_timer):
            timer.cancel()
        await self.watcher.stop()

        for task in list(self._side_tasks):
            task.cancel()
        self._side_tasks.clear()

        if self._display_task is not None:
            self._display_task.cancel()
            self._display_task = None
        self._pending_snapshot = None

        await self.consumer.stop_consuming()
        logger.info("Session controller stopped")

    # =========================================================================
    # Public API (goes through the event queue)
    # =========================================================================

    async def start_payment(self) -> Transition:
        """Request a new payment session."""
        return await self.request(EventType.START_PAYMENT)

    async def cancel(self, reason: str = "cancelled") -> Transition:
        """Request cancelling the payment session."""
        return await self.request(EventType.CANCEL_PAYMENT, reason=reason)

    async def request(self, event_type: EventType, **data: Any) -> Transition:
        """
        Publish an event and wait until the consumer has applied it.

        Returns:
            The resulting transition.

        Raises:
            asyncio.TimeoutError: If the consumer does not handle the event.
        """
        reply: asyncio.Future = asyncio.get_running_loop().create_future()
        await self.publisher.publish(event_type, reply=reply, **data)
        return await asyncio.wait_for(reply, timeout=REQUEST_TIMEOUT_S)

    # =========================================================================
    # Event Handlers
    # =========================================================================

    def _register_handlers(self) -> None:
        handlers = {
            EventType.START_PAYMENT: self._handle_start_payment,
            EventType.CANCEL_PAYMENT: self._handle_cancel,
            EventType.BUTTON_PRESSED: self._handle_button,
            EventType.PAYMENT_TICK: self._handle_payment_tick,
            EventType.SUCCESS_TICK: self._handle_success_tick,
            EventType.MESSAGE_ELAPSED: self._handle_message_elapsed,
            EventType.WATCH_SEEDED: self._handle_watch_seeded,
            EventType.WATCH_STATUS: self._handle_watch_status,
            EventType.PAYMENT_MATCHED: self._handle_payment_matched,
            EventType.RELAY_STATE_CHANGED: self._handle_device_update,
            EventType.DEVICE_STATE_CHANGED: self._handle_device_update,
        }
        for event_type, handler in handlers.items():
            self.consumer.register_handler(event_type, handler)

    async def _handle_start_payment(self, event: dict) -> None:
        transition = await self._apply(self.machine.start_payment())
        self._reply(event, transition)

    async def _handle_cancel(self, event: dict) -> None:
        transition = await self._apply(self.machine.cancel(event.get("reason", "cancelled")))
        self._reply(event, transition)

    async def _handle_button(self, event: dict) -> None:
        await self._apply(self.machine.button_pressed())

    async def _handle_payment_tick(self, event: dict) -> None:
        if self._is_current(event):
            await self._apply(self.machine.payment_tick())

    async def _handle_success_tick(self, event: dict) -> None:
        if self._is_current(event):
            await self._apply(self.machine.success_tick())

    async def _handle_message_elapsed(self, event: dict) -> None:
        if self._is_current(event):
            await self._apply(self.machine.message_elapsed())

    async def _handle_watch_seeded(self, event: dict) -> None:
        if self._is_current(event):
            await self._apply(self.machine.seed_start_block(event["height"]))

    async def _handle_watch_status(self, event: dict) -> None:
        if self._is_current(event):
            await self._apply(self.machine.set_status(event["status"]))

    async def _handle_payment_matched(self, event: dict) -> None:
        if not self._is_current(event):
            return
        match: TransferMatch = event["match"]
        await self._apply(self.machine.confirm_payment(match.tx_hash, match.payer_address))

    async def _handle_device_update(self, event: dict) -> None:
        await self.publish_snapshot()

    def _is_current(self, event: dict) -> bool:
        epoch = event.get("epoch")
        if epoch != self.machine.epoch:
            logger.debug(
                f"Discarding stale {event.get('type')} (epoch {epoch}, current {self.machine.epoch})"
            )
            return False
        return True

    @staticmethod
    def _reply(event: dict, transition: Transition) -> None:
        reply = event.get("reply")
        if reply is not None and not reply.done():
            reply.set_result(transition)

    # =========================================================================
    # Effects
    # =========================================================================

    async def _apply(self, transition: Transition) -> Transition:
        if not transition.accepted:
            logger.debug(f"Transition ignored: {transition.reason}")
            return transition

        for effect in transition.effects:
            self._run_effect(effect)

        await self.publish_snapshot()
        return transition

    def _run_effect(self, effect: Effect) -> None:
        epoch = self.machine.epoch

        if effect == Effect.START_PAYMENT_TIMER:
            self._payment_timer.start(epoch=epoch)
        elif effect == Effect.STOP_PAYMENT_TIMER:
            self._payment_timer.cancel()
        elif effect == Effect.START_WATCHER:
            self._watch_epoch = epoch
            self.watcher.start()
        elif effect == Effect.STOP_WATCHER:
            self.watcher.cancel()
        elif effect == Effect.START_SUCCESS_TIMER:
            self._success_timer.start(epoch=epoch)
        elif effect == Effect.STOP_SUCCESS_TIMER:
            self._success_timer.cancel()
        elif effect == Effect.START_MESSAGE_TIMER:
            self._message_timer.start(epoch=epoch)
        elif effect == Effect.STOP_MESSAGE_TIMER:
            self._message_timer.cancel()
        elif effect == Effect.ACTUATE_RELAY:
            self._actuate_relay()
        elif effect == Effect.MINT_RECEIPT:
            self._spawn(self._mint_receipt(self.machine.session.payer_address))
        elif effect == Effect.PLAY_SUCCESS_SOUND:
            self._spawn(self._play_sound(SUCCESS_SOUND))

    def _actuate_relay(self) -> None:
        link = self.device_link
        if link is None or not link.is_connected:
            logger.warning("Controller board not connected, relay not actuated")
            return
        link.send_command(OutboundCommand.RELAY_ON.value)

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)

    async def _mint_receipt(self, payer_address: Optional[str]) -> None:
        if self._minter is None or not payer_address:
            return

        try:
            result = await self._minter.mint_receipt(self._rule.merchant_address, payer_address)
        except ConfigurationError as e:
            logger.warning(f"Receipt minting disabled: {e.message}")
            return
        except Exception as e:
            logger.error(f"Receipt minting failed: {e}")
            return

        if result.success:
            logger.info(f"Receipt minted for {payer_address}: {result.tx_hash}")
        else:
            logger.warning(f"Receipt minting rejected: {result.error}")

    async def _play_sound(self, sound: str) -> None:
        if self._display is None:
            return
        try:
            await self._display.play_sound(sound)
        except Exception as e:
            logger.warning(f"Failed to play {sound} sound: {e}")

    async def publish_snapshot(self) -> None:
        """
        Hand the current state to the presentation sink.

        Returns without waiting for the sink. A single publisher task sends
        snapshots in order; while it is busy only the newest one is kept.
        """
        if self._display is None:
            return
        self._pending_snapshot = self.snapshot()
        if self._display_task is None or self._display_task.done():
            self._display_task = asyncio.create_task(self._publish_pending(), name="display_publish")

    async def _publish_pending(self) -> None:
        while self._pending_snapshot is not None:
            snapshot, self._pending_snapshot = self._pending_snapshot, None
            try:
                await self._display.publish_state(snapshot)
            except Exception as e:
                logger.warning(f"Failed to publish display state: {e}")

    # =========================================================================
    # Watcher Callbacks
    # =========================================================================

    async def _on_watch_match(self, match: TransferMatch) -> None:
        await self.publisher.publish(EventType.PAYMENT_MATCHED, match=match, epoch=self._watch_epoch)

    async def _on_watch_seeded(self, height: int) -> None:
        await self.publisher.publish(EventType.WATCH_SEEDED, height=height, epoch=self._watch_epoch)

    async def _on_watch_status(self, status: str) -> None:
        await self.publisher.publish(EventType.WATCH_STATUS, status=status, epoch=self._watch_epoch)
