"""
Interest Calculation

Simple (non-compounding) interest on a fixed principal, pro-rated by the
number of seconds the deposit was held. All arithmetic is integer arithmetic
on wei; the fractional remainder is floored away and never carried forward.
"""

from dataclasses import dataclass

SECONDS_PER_YEAR = 365 * 24 * 3600

MIN_YEARLY_RETURN_RATE = 1
MAX_YEARLY_RETURN_RATE = 100


def is_valid_rate(yearly_return_rate) -> bool:
    """Check a yearly return rate, in whole percent"""
    if isinstance(yearly_return_rate, bool) or not isinstance(yearly_return_rate, int):
        return False
    return MIN_YEARLY_RETURN_RATE <= yearly_return_rate <= MAX_YEARLY_RETURN_RATE


def calculate_interest(principal: int, yearly_return_rate: int, elapsed_seconds: int) -> int:
    """
    Calculate the interest earned on a deposit

        interest = principal * rate * elapsed / (100 * SECONDS_PER_YEAR)

    Args:
        principal: Deposited amount in wei
        yearly_return_rate: Percent per year (1-100)
        elapsed_seconds: Seconds between deposit and withdrawal

    Returns:
        Interest in the credit token's smallest unit, rounded down
    """
    if principal < 0 or elapsed_seconds < 0:
        raise ValueError("Principal and elapsed time must not be negative")
    return principal * yearly_return_rate * elapsed_seconds // (100 * SECONDS_PER_YEAR)


@dataclass(frozen=True)
class InterestQuote:
    """Interest owed on one deposit at one point in time"""
    principal: int
    yearly_return_rate: int
    start_time: int
    as_of: int

    @property
    def elapsed_seconds(self) -> int:
        # Clock is monotonic, but a quote for an inactive record starts at 0
        return max(0, self.as_of - self.start_time)

    @property
    def interest(self) -> int:
        return calculate_interest(self.principal, self.yearly_return_rate, self.elapsed_seconds)
