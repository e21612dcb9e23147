"""
Domain layer - Business logic and domain models.

Contains:
- Session state machine
- Payment matching rules and calldata decoding
- Controller board line protocol
- Payment request URIs
"""

from .session_state_machine import (
    Effect,
    Session,
    SessionStateMachine,
    Transition,
)
from .transfer_matcher import (
    MatchRule,
    TokenTransfer,
    decode_transfer_calldata,
    encode_transfer_calldata,
    TRANSFER_SELECTOR,
)
from .line_protocol import (
    InboundMessage,
    OutboundCommand,
    LineDecoder,
    encode_command,
    parse_message,
)
from .payment_request import (
    build_payment_uri,
    describe_price,
    format_amount,
)


__all__ = [
    # Session
    "Effect",
    "Session",
    "SessionStateMachine",
    "Transition",
    # Matching
    "MatchRule",
    "TokenTransfer",
    "decode_transfer_calldata",
    "encode_transfer_calldata",
    "TRANSFER_SELECTOR",
    # Line protocol
    "InboundMessage",
    "OutboundCommand",
    "LineDecoder",
    "encode_command",
    "parse_message",
    # Payment request
    "build_payment_uri",
    "describe_price",
    "format_amount",
]
