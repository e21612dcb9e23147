"""
Transfer Matcher - Decides whether a ledger transaction is the expected payment.

Supports two modes:
- Native: plain value transfer to the merchant.
- Token: ERC-20 ``transfer(address,uint256)`` call on the token contract.

Token calldata layout:
    0..4    selector a9059cbb
    4..36   recipient, left-padded to 32 bytes (address = last 20 bytes)
    36..68  amount, 32-byte big-endian unsigned integer
"""

from dataclasses import dataclass
from typing import Final, Optional

from core.value_objects import (
    AssetMode,
    ChainTransaction,
    TransferMatch,
    normalize_address,
)


# =============================================================================
# ERC-20 Calldata
# =============================================================================

TRANSFER_SELECTOR: Final[bytes] = bytes.fromhex("a9059cbb")
TRANSFER_CALLDATA_LENGTH: Final[int] = 68
WORD_SIZE: Final[int] = 32
ADDRESS_SIZE: Final[int] = 20


@dataclass(frozen=True)
class TokenTransfer:
    """Decoded arguments of an ERC-20 transfer call."""

    recipient: str
    amount: int


def decode_transfer_calldata(calldata: bytes) -> Optional[TokenTransfer]:
    """
    Decode ``transfer(address,uint256)`` call data.

    Args:
        calldata: Raw transaction input.

    Returns:
        Decoded transfer, or None if the data is not a transfer call.
    """
    if len(calldata) < TRANSFER_CALLDATA_LENGTH:
        return None
    if calldata[:4] != TRANSFER_SELECTOR:
        return None

    recipient_word = calldata[4:4 + WORD_SIZE]
    amount_word = calldata[4 + WORD_SIZE:4 + 2 * WORD_SIZE]

    recipient = "0x" + recipient_word[WORD_SIZE - ADDRESS_SIZE:].hex()
    amount = int.from_bytes(amount_word, "big")

    return TokenTransfer(recipient=recipient, amount=amount)


def encode_transfer_calldata(recipient: str, amount: int) -> bytes:
    """Build ``transfer(address,uint256)`` call data."""
    address = bytes.fromhex(normalize_address(recipient)[2:])
    return (
        TRANSFER_SELECTOR
        + address.rjust(WORD_SIZE, b"\x00")
        + amount.to_bytes(WORD_SIZE, "big")
    )


# =============================================================================
# Match Rule
# =============================================================================


@dataclass(frozen=True)
class MatchRule:
    """
    Payment acceptance rule.

    Attributes:
        mode: Native value transfer or token transfer.
        merchant_address: Address the payment must reach.
        required_amount: Minimum amount in base units.
        token_contract: Token contract address (token mode only).
        strict_native: In native mode, reject transactions carrying calldata.
    """

    mode: AssetMode
    merchant_address: str
    required_amount: int
    token_contract: Optional[str] = None
    strict_native: bool = True

    def __post_init__(self) -> None:
        """Normalize addresses and validate the rule."""
        object.__setattr__(self, "merchant_address", normalize_address(self.merchant_address))
        if self.required_amount < 0:
            raise ValueError("Required amount cannot be negative")
        if self.mode == AssetMode.TOKEN:
            if not self.token_contract:
                raise ValueError("Token mode requires a token contract")
            object.__setattr__(self, "token_contract", normalize_address(self.token_contract))

    @classmethod
    def native(cls, merchant_address: str, required_amount: int, strict: bool = True) -> "MatchRule":
        return cls(
            mode=AssetMode.NATIVE,
            merchant_address=merchant_address,
            required_amount=required_amount,
            strict_native=strict,
        )

    @classmethod
    def token(cls, token_contract: str, merchant_address: str, required_amount: int) -> "MatchRule":
        return cls(
            mode=AssetMode.TOKEN,
            merchant_address=merchant_address,
            required_amount=required_amount,
            token_contract=token_contract,
        )

    def match(self, tx: ChainTransaction, block_height: int) -> Optional[TransferMatch]:
        """
        Check a transaction against the rule.

        Args:
            tx: Validated transaction.
            block_height: Height of the block containing the transaction.

        Returns:
            TransferMatch if the transaction pays the merchant, else None.
        """
        if self.mode == AssetMode.TOKEN:
            return self._match_token(tx, block_height)
        return self._match_native(tx, block_height)

    def _match_native(self, tx: ChainTransaction, block_height: int) -> Optional[TransferMatch]:
        if tx.to_address != self.merchant_address:
            return None
        if tx.value < self.required_amount:
            return None
        if self.strict_native and tx.calldata:
            return None

        return TransferMatch(
            tx_hash=tx.hash,
            payer_address=tx.from_address,
            recipient_address=tx.to_address,
            amount=tx.value,
            block_height=block_height,
        )

    def _match_token(self, tx: ChainTransaction, block_height: int) -> Optional[TransferMatch]:
        if tx.to_address != self.token_contract:
            return None

        transfer = decode_transfer_calldata(tx.calldata)
        if transfer is None:
            return None
        if transfer.recipient != self.merchant_address:
            return None
        if transfer.amount < self.required_amount:
            return None

        return TransferMatch(
            tx_hash=tx.hash,
            payer_address=tx.from_address,
            recipient_address=transfer.recipient,
            amount=transfer.amount,
            block_height=block_height,
        )
