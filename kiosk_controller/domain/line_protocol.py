"""
Line protocol spoken by the controller board.

Newline-terminated ASCII tokens:

    out  RELAY_ON           actuate the relay
    in   BUTTON_4_PRESSED   request a payment session
    in   RELAY_ON_OK        relay is on
    in   RELAY_AUTO_OFF     relay switched itself off
"""

from enum import Enum
from typing import Final, Optional


LINE_TERMINATOR: Final[str] = "\n"
TEXT_ENCODING: Final[str] = "ascii"


class OutboundCommand(str, Enum):
    """Commands sent to the board."""

    RELAY_ON = "RELAY_ON"


class InboundMessage(str, Enum):
    """Messages received from the board."""

    BUTTON_4_PRESSED = "BUTTON_4_PRESSED"
    RELAY_ON_OK = "RELAY_ON_OK"
    RELAY_AUTO_OFF = "RELAY_AUTO_OFF"


def parse_message(line: str) -> Optional[InboundMessage]:
    """Map a trimmed line to a known message, or None if unknown."""
    try:
        return InboundMessage(line)
    except ValueError:
        return None


def encode_command(token: str) -> bytes:
    """Frame a command token for the wire."""
    return (token + LINE_TERMINATOR).encode(TEXT_ENCODING)


class LineDecoder:
    """
    Incremental byte-to-line decoder.

    Bytes that do not end with a newline are kept until the next chunk.
    Lines are trimmed and empty ones dropped.
    """

    def __init__(self, max_buffer: int = 4096) -> None:
        self._buffer = ""
        self._max_buffer = max_buffer

    def feed(self, chunk: bytes) -> list[str]:
        """
        Decode a chunk and return the complete, non-empty lines it closes.

        Args:
            chunk: Raw bytes from the serial port.
        """
        self._buffer += chunk.decode(TEXT_ENCODING, errors="replace")
        *complete, self._buffer = self._buffer.split(LINE_TERMINATOR)

        # A board that never sends a newline must not grow the buffer forever.
        if len(self._buffer) > self._max_buffer:
            self._buffer = ""

        return [line.strip() for line in complete if line.strip()]

    def reset(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Undelivered partial line."""
        return self._buffer
