"""
Session State Machine - Manages the kiosk interaction cycle.

landing -> payment -> success(timer) -> success(message) -> landing,
plus payment -> landing on cancel or timeout.

Transitions are synchronous and only touch the Session; the side effects
they require (timers, watcher, relay, minting, sound) are returned as
Effect values for the controller to carry out.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from core.value_objects import SuccessPhase, View
from loggers import logger


# =============================================================================
# Effects
# =============================================================================


class Effect(Enum):
    """Side effects requested by a transition."""

    START_PAYMENT_TIMER = auto()
    STOP_PAYMENT_TIMER = auto()
    START_WATCHER = auto()
    STOP_WATCHER = auto()
    START_SUCCESS_TIMER = auto()
    STOP_SUCCESS_TIMER = auto()
    START_MESSAGE_TIMER = auto()
    STOP_MESSAGE_TIMER = auto()
    ACTUATE_RELAY = auto()
    MINT_RECEIPT = auto()
    PLAY_SUCCESS_SOUND = auto()


@dataclass(frozen=True)
class Transition:
    """
    Result of applying an event to the session.

    Attributes:
        accepted: Whether the event changed the session.
        effects: Side effects to carry out, in order.
        reason: Why the event was ignored (when not accepted).
    """

    accepted: bool
    effects: tuple[Effect, ...] = ()
    reason: str = ""

    @classmethod
    def ignored(cls, reason: str) -> "Transition":
        return cls(accepted=False, reason=reason)

    @classmethod
    def applied(cls, *effects: Effect) -> "Transition":
        return cls(accepted=True, effects=effects)


# =============================================================================
# Session
# =============================================================================


@dataclass
class Session:
    """
    State of the current kiosk interaction.

    Created once and reinitialized in place on every reset.
    """

    view: View = View.LANDING
    success_phase: SuccessPhase = SuccessPhase.TIMER
    tx_hash: Optional[str] = None
    payer_address: Optional[str] = None
    time_left_sec: int = 0
    success_time_left_sec: int = 0
    start_block_height: Optional[int] = None
    status: str = "Idle"
    epoch: int = 0
    completed_payments: int = 0

    def reset(self, status: str = "Idle") -> None:
        """Return to the landing view. The epoch keeps counting."""
        self.view = View.LANDING
        self.success_phase = SuccessPhase.TIMER
        self.tx_hash = None
        self.payer_address = None
        self.time_left_sec = 0
        self.success_time_left_sec = 0
        self.start_block_height = None
        self.status = status
        self.epoch += 1


# =============================================================================
# Session State Machine
# =============================================================================


class SessionStateMachine:
    """
    State machine for the kiosk session.

    All methods run on the controller's event loop; none of them await.
    """

    def __init__(self, payment_timeout_sec: int, success_duration_sec: int) -> None:
        """
        Initialize the state machine.

        Args:
            payment_timeout_sec: Time allowed to pay.
            success_duration_sec: Countdown shown after a confirmed payment.
        """
        self._session = Session()
        self._payment_timeout_sec = payment_timeout_sec
        self._success_duration_sec = success_duration_sec

    @property
    def session(self) -> Session:
        return self._session

    @property
    def view(self) -> View:
        return self._session.view

    @property
    def epoch(self) -> int:
        return self._session.epoch

    def start_payment(self) -> Transition:
        """Enter the payment view. Only valid from landing."""
        session = self._session
        if session.view != View.LANDING:
            return Transition.ignored(f"start_payment ignored in {session.view.value}")

        session.view = View.PAYMENT
        session.time_left_sec = self._payment_timeout_sec
        session.start_block_height = None
        session.tx_hash = None
        session.payer_address = None
        session.status = "Waiting for payment..."
        session.epoch += 1

        logger.info(f"Payment started (timeout {self._payment_timeout_sec}s)")
        return Transition.applied(Effect.START_PAYMENT_TIMER, Effect.START_WATCHER)

    def button_pressed(self) -> Transition:
        """Hardware button: start a payment only from landing."""
        if self._session.view != View.LANDING:
            return Transition.ignored(f"button ignored in {self._session.view.value}")
        return self.start_payment()

    def cancel(self, reason: str = "cancelled") -> Transition:
        """Leave payment for landing. Same path for user cancel and timeout."""
        if self._session.view != View.PAYMENT:
            return Transition.ignored(f"cancel ignored in {self._session.view.value}")

        logger.info(f"Payment {reason}")
        self._session.reset(status="Idle")
        return Transition.applied(Effect.STOP_PAYMENT_TIMER, Effect.STOP_WATCHER)

    def payment_tick(self) -> Transition:
        """One second of the payment countdown."""
        session = self._session
        if session.view != View.PAYMENT:
            return Transition.ignored("payment tick outside payment")

        session.time_left_sec = max(0, session.time_left_sec - 1)
        if session.time_left_sec == 0:
            return self.cancel(reason="timed out")
        return Transition.applied()

    def seed_start_block(self, height: int) -> Transition:
        """Record the head height the watcher started from."""
        session = self._session
        if session.view != View.PAYMENT:
            return Transition.ignored("seed outside payment")
        if session.start_block_height is not None:
            return Transition.ignored("start block already set")

        session.start_block_height = height
        session.status = "Monitoring blockchain..."
        return Transition.applied()

    def set_status(self, status: str) -> Transition:
        """Update the banner text without changing the phase."""
        self._session.status = status
        return Transition.applied()

    def confirm_payment(self, tx_hash: str, payer_address: str) -> Transition:
        """Payment found on the ledger. Only valid from payment."""
        session = self._session
        if session.view != View.PAYMENT:
            return Transition.ignored(f"confirm ignored in {session.view.value}")

        session.view = View.SUCCESS
        session.success_phase = SuccessPhase.TIMER
        session.tx_hash = tx_hash
        session.payer_address = payer_address
        session.success_time_left_sec = self._success_duration_sec
        session.time_left_sec = 0
        session.start_block_height = None
        session.status = "Payment verified"
        session.completed_payments += 1
        session.epoch += 1

        logger.info(f"Payment confirmed: {tx_hash} from {payer_address}")
        return Transition.applied(
            Effect.STOP_PAYMENT_TIMER,
            Effect.STOP_WATCHER,
            Effect.START_SUCCESS_TIMER,
            Effect.ACTUATE_RELAY,
            Effect.MINT_RECEIPT,
            Effect.PLAY_SUCCESS_SOUND,
        )

    def success_tick(self) -> Transition:
        """One second of the success countdown; flips to message at zero."""
        session = self._session
        if session.view != View.SUCCESS or session.success_phase != SuccessPhase.TIMER:
            return Transition.ignored("success tick outside success timer")

        session.success_time_left_sec = max(0, session.success_time_left_sec - 1)
        if session.success_time_left_sec > 0:
            return Transition.applied()

        session.success_phase = SuccessPhase.MESSAGE
        session.epoch += 1
        return Transition.applied(Effect.STOP_SUCCESS_TIMER, Effect.START_MESSAGE_TIMER)

    def message_elapsed(self) -> Transition:
        """The closing message has been shown long enough."""
        session = self._session
        if session.view != View.SUCCESS or session.success_phase != SuccessPhase.MESSAGE:
            return Transition.ignored("message timer outside message phase")

        session.reset(status="Idle")
        return Transition.applied(Effect.STOP_MESSAGE_TIMER)
