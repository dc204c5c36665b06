"""
Deployment

Wires a credit ledger and a bank together: deploy the credit ledger, deploy
the bank against its address, then pass the minter role from the deployer to
the bank. Each step is its own call, as it would be on a live chain; a bank
deployed without the last step rejects every withdrawal.
"""

import logging
from dataclasses import dataclass

from .bank import DepositBank
from .chain import Chain
from .token import CreditLedger


logger = logging.getLogger(__name__)


@dataclass
class Deployment:
    """The two contracts of one bank"""
    credit_ledger: CreditLedger
    bank: DepositBank
    deployer: str


def deploy(
    chain: Chain,
    deployer: str,
    yearly_return_rate: int = 10,
    token_name: str = "BBSE Token",
    token_symbol: str = "BBSE"
) -> Deployment:
    """
    Deploy a credit ledger and a bank, and make the bank the minter

    Raises:
        InvalidRate: If yearly_return_rate is outside 1-100; the credit
            ledger from the first step stays deployed
    """
    credit_ledger = CreditLedger.deploy(chain, deployer, name=token_name, symbol=token_symbol)
    bank = DepositBank.deploy(chain, deployer, credit_ledger.address, yearly_return_rate)
    credit_ledger.pass_minter_role(deployer, bank.address)

    logger.info(
        "Bank %s deployed at %d%% with credit ledger %s",
        bank.address, yearly_return_rate, credit_ledger.address
    )
    return Deployment(credit_ledger=credit_ledger, bank=bank, deployer=deployer)
