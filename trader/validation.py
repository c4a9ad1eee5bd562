"""
Input validation for everything a user can type.

All checks raise InvalidInput and run before any record is read or
changed, so a bad command never leaves partial state behind.
"""

from decimal import Decimal, InvalidOperation

from web3 import Web3

from trader.errors import InvalidInput
from trader.models import TriggerType

MIN_SLIPPAGE = 1
MAX_SLIPPAGE = 50


def parse_address(text: str) -> str:
    """Return the checksummed form of an EVM address."""
    text = (text or "").strip()
    if not Web3.is_address(text):
        raise InvalidInput(f"Not a valid token address: {text[:42]}")
    return Web3.to_checksum_address(text)


def looks_like_address(text: str) -> bool:
    """Cheap check used on every chat message before a full parse."""
    text = text.strip()
    return text.startswith("0x") and len(text) == 42 and Web3.is_address(text)


def parse_amount(text: str | Decimal, what: str = "amount") -> Decimal:
    """A strictly positive, finite decimal amount."""
    try:
        amount = Decimal(str(text).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"Invalid {what}: {text}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInput(f"{what.capitalize()} must be a positive number")
    return amount


def to_wei(amount: Decimal) -> int:
    """Native amount (MON) to wei. Rejects amounts below 1 wei."""
    wei = Web3.to_wei(amount, "ether")
    if wei <= 0:
        raise InvalidInput("Amount is too small")
    return wei


def parse_slippage(text: str | int) -> int:
    try:
        value = Decimal(str(text).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"Slippage must be a whole number between {MIN_SLIPPAGE} and {MAX_SLIPPAGE}")
    if value != value.to_integral_value() or not MIN_SLIPPAGE <= value <= MAX_SLIPPAGE:
        raise InvalidInput(f"Slippage must be a whole number between {MIN_SLIPPAGE} and {MAX_SLIPPAGE}")
    return int(value)


def parse_percentage(text: str | int) -> int:
    """Sell percentage, 1-100 inclusive."""
    try:
        value = int(str(text).strip().rstrip("%"))
    except ValueError:
        raise InvalidInput(f"Percentage must be a whole number between 1 and 100: {text}")
    if not 1 <= value <= 100:
        raise InvalidInput("Percentage must be between 1 and 100")
    return value


def parse_positive_int(text: str | int, what: str) -> int:
    try:
        value = int(str(text).strip())
    except ValueError:
        raise InvalidInput(f"{what} must be a whole number")
    if value <= 0:
        raise InvalidInput(f"{what} must be greater than 0")
    return value


def parse_trigger(type_text: str, value_text: str, percentage_text: str) -> tuple[TriggerType, Decimal, int]:
    """
    Parse an auto-sell rule as the user types it.

    The time rule is entered in minutes and stored in milliseconds.
    """
    try:
        trigger_type = TriggerType(type_text.strip().lower())
    except ValueError:
        names = ", ".join(t.value for t in TriggerType)
        raise InvalidInput(f"Unknown trigger type '{type_text}' (use one of: {names})")

    value = parse_amount(value_text, "trigger value")
    if trigger_type == TriggerType.TIME:
        value = (value * 60_000).to_integral_value()

    return trigger_type, value, parse_percentage(percentage_text)
