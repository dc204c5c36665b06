"""
Native Currency Units

Amounts are held as integers of the smallest unit (wei). Display conversion to
whole ether goes through Decimal; float is never used for monetary values.
"""

from decimal import Decimal

WEI_PER_ETHER = 10 ** 18
ETHER_DECIMALS = 18

# Smallest accepted deposit: one whole ether
MINIMUM_DEPOSIT = WEI_PER_ETHER


def from_wei(wei: int) -> Decimal:
    """Convert wei to an exact Decimal ether amount"""
    return Decimal(wei) / WEI_PER_ETHER


def format_ether(wei: int, symbol: str = "ETH") -> str:
    """Format for display"""
    ether = from_wei(wei).normalize()
    # normalize() turns whole numbers like 100 into 1E+2
    if ether == ether.to_integral_value():
        ether = ether.quantize(Decimal(1))
    return f"{ether:,f} {symbol}"


def parse_amount(value: str) -> int:
    """
    Parse a decimal string of smallest units, as sent over the API

    Raises:
        ValueError: If the string is not a non-negative integer
    """
    digits = value.strip() if isinstance(value, str) else ""
    if not (digits.isascii() and digits.isdigit()):
        raise ValueError(f"Amount must be a non-negative integer string, got '{value}'")
    return int(digits)
