"""
Ledger Errors

Every failure a bank or token call can raise. Each error carries a stable,
human-readable reason string that callers and tests can match verbatim. All of
them abort the whole call; none is retryable.
"""

from typing import Optional


class LedgerError(ValueError):
    """Base class for call-time and construction-time validation failures"""

    default_reason = "Ledger call failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class InvalidRate(LedgerError):
    default_reason = "Yearly return rate must be between 1 and 100"


class BelowMinimum(LedgerError):
    default_reason = "Minimum deposit amount is 1 Ether"


class DuplicateActiveDeposit(LedgerError):
    default_reason = "Account can't have multiple active deposits"


class NoActiveDeposit(LedgerError):
    default_reason = "Account must have an active deposit to withdraw"


class Unauthorized(LedgerError):
    default_reason = "Caller is not the minter"


class InsufficientBalance(LedgerError):
    default_reason = "Transfer amount exceeds balance"


class InsufficientAllowance(LedgerError):
    default_reason = "Transfer amount exceeds allowance"


class InvalidAmount(LedgerError):
    default_reason = "Amount must be a non-negative integer"


class InvalidAddress(LedgerError):
    default_reason = "Address must not be empty"


def require_amount(amount) -> int:
    """Validate an unsigned integer amount and return it"""
    # bool is an int subclass but never a valid amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmount()
    return amount


def require_address(address: Optional[str]) -> str:
    """Validate that an address is a non-blank string and return it"""
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddress()
    return address
