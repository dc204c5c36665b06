"""
BBSE Bank

An interest-bearing custodial deposit bank. Deposits of native currency earn
simple interest at a fixed yearly rate, paid out on withdrawal as credit
minted on a separate token ledger that only the bank may mint on.
"""

__version__ = "1.0.0"
