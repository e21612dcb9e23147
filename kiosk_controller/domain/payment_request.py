"""
Payment request URIs (EIP-681) shown to the payer as a QR code.
"""

from decimal import Decimal
from typing import Final

from core.value_objects import AssetMode
from domain.transfer_matcher import MatchRule


NATIVE_DECIMALS: Final[int] = 18
NATIVE_SYMBOL: Final[str] = "ETH"


def format_amount(amount: int, decimals: int, symbol: str) -> str:
    """
    Format base units for display.

    Example:
        format_amount(10**15, 18, "ETH") -> "0.001 ETH"
    """
    value = Decimal(amount).scaleb(-decimals).normalize()
    text = format(value, "f")
    return f"{text} {symbol}"


def build_payment_uri(rule: MatchRule, chain_id: int) -> str:
    """
    Build the EIP-681 URI for the rule.

    Native:
        ethereum:<merchant>@<chain_id>?value=<wei>
    Token:
        ethereum:<token>@<chain_id>/transfer?address=<merchant>&uint256=<amount>
    """
    if rule.mode == AssetMode.TOKEN:
        return (
            f"ethereum:{rule.token_contract}@{chain_id}/transfer"
            f"?address={rule.merchant_address}&uint256={rule.required_amount}"
        )
    return f"ethereum:{rule.merchant_address}@{chain_id}?value={rule.required_amount}"


def describe_price(rule: MatchRule, token_decimals: int, token_symbol: str) -> str:
    """Human-readable price for the landing button."""
    if rule.mode == AssetMode.TOKEN:
        return format_amount(rule.required_amount, token_decimals, token_symbol)
    return format_amount(rule.required_amount, NATIVE_DECIMALS, NATIVE_SYMBOL)
