"""
Deposit Bank

Custodies native currency deposits, one active deposit per address. On
withdrawal the bank returns the principal and mints the interest earned as
credit on its credit ledger. The bank can only mint once the credit ledger's
minter role has been passed to it; until then every withdrawal fails and
leaves the deposit in place.

Per-address state machine:

    NoDeposit --deposit--> ActiveDeposit --withdraw--> NoDeposit

There is no top-up and no partial withdrawal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from .audit import AuditEventType
from .chain import Chain, new_address
from .errors import (
    InvalidRate, BelowMinimum, DuplicateActiveDeposit, NoActiveDeposit,
    InvalidAddress, require_address, require_amount
)
from .interest import InterestQuote, is_valid_rate
from .storage import StorageRecord
from .token import CreditLedger
from .units import MINIMUM_DEPOSIT


logger = logging.getLogger(__name__)


@dataclass
class BankState(StorageRecord):
    """Bank configuration, fixed at deployment"""
    credit_ledger_address: str
    yearly_return_rate: int
    deployer: str


@dataclass
class Investor(StorageRecord):
    """
    Deposit record of one address

    Records are never deleted. A withdrawal resets amount and the active flag
    so the address can deposit again; start_time is only meaningful while
    has_active_deposit is set.
    """
    bank: str
    address: str
    has_active_deposit: bool = False
    amount: int = 0
    start_time: int = 0


@dataclass(frozen=True)
class WithdrawalReceipt:
    """What a successful withdrawal paid out"""
    address: str
    principal: int
    interest: int
    elapsed_seconds: int
    withdrawn_at: int


class DepositBank:
    """
    Interest-bearing custodial bank

    All mutating methods take the calling address explicitly and run as one
    atomic call on the chain.
    """

    KIND = "deposit_bank"
    STATE_TABLE = "deposit_banks"
    INVESTORS_TABLE = "investors"

    def __init__(self, chain: Chain, address: str):
        self.chain = chain
        self.storage = chain.storage
        self.audit_trail = chain.audit_trail
        self.address = address

    @classmethod
    def deploy(
        cls,
        chain: Chain,
        deployer: str,
        credit_ledger_address: str,
        yearly_return_rate: int
    ) -> 'DepositBank':
        """
        Create a new bank paying interest through an existing credit ledger

        Args:
            chain: Execution environment
            deployer: Address creating the bank
            credit_ledger_address: Where the credit ledger lives
            yearly_return_rate: Percent per year, 1 to 100 inclusive

        Raises:
            InvalidRate: If the rate is outside 1-100
            InvalidAddress: If no credit ledger lives at the given address
        """
        if not is_valid_rate(yearly_return_rate):
            raise InvalidRate()
        require_address(deployer)
        require_address(credit_ledger_address)
        CreditLedger.at(chain, credit_ledger_address)

        bank = cls(chain, new_address())
        now = datetime.now(timezone.utc)
        with chain.call():
            state = BankState(
                id=bank.address,
                created_at=now,
                updated_at=now,
                credit_ledger_address=credit_ledger_address,
                yearly_return_rate=yearly_return_rate,
                deployer=deployer
            )
            bank.storage.save(cls.STATE_TABLE, state.id, state.to_dict())
            chain.register_contract(bank, cls.KIND, deployer)
        return bank

    @classmethod
    def at(cls, chain: Chain, address: str) -> 'DepositBank':
        """
        Get the bank deployed at an address

        Raises:
            InvalidAddress: If no bank lives there
        """
        contract = chain.contract_at(address)
        if isinstance(contract, cls):
            return contract
        if not chain.storage.exists(cls.STATE_TABLE, address):
            raise InvalidAddress(f"No deposit bank deployed at {address}")
        bank = cls(chain, address)
        chain.attach_contract(bank)
        return bank

    def _load_state(self) -> BankState:
        return BankState.from_dict(self.storage.load(self.STATE_TABLE, self.address))

    def _investor_key(self, address: str) -> str:
        return f"{self.address}:{address}"

    def _save_investor(self, investor: Investor) -> None:
        investor.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.INVESTORS_TABLE, investor.id, investor.to_dict())

    # Reads

    @property
    def yearly_return_rate(self) -> int:
        return self._load_state().yearly_return_rate

    @property
    def credit_ledger_address(self) -> str:
        return self._load_state().credit_ledger_address

    @property
    def credit_ledger(self) -> CreditLedger:
        return CreditLedger.at(self.chain, self.credit_ledger_address)

    @property
    def custodial_balance(self) -> int:
        """Native currency currently held by the bank"""
        return self.chain.get_balance(self.address)

    def investors(self, address: str) -> Investor:
        """Get the deposit record of an address; blank if it never deposited"""
        data = self.storage.load(self.INVESTORS_TABLE, self._investor_key(address))
        if data:
            return Investor.from_dict(data)

        now = datetime.now(timezone.utc)
        return Investor(
            id=self._investor_key(address),
            created_at=now,
            updated_at=now,
            bank=self.address,
            address=address
        )

    def quote(self, address: str, as_of: Optional[int] = None) -> InterestQuote:
        """Interest a withdrawal would pay at as_of (default: now)"""
        investor = self.investors(address)
        if as_of is None:
            as_of = self.chain.timestamp()
        if not investor.has_active_deposit:
            return InterestQuote(principal=0, yearly_return_rate=self.yearly_return_rate,
                                 start_time=as_of, as_of=as_of)
        return InterestQuote(
            principal=investor.amount,
            yearly_return_rate=self.yearly_return_rate,
            start_time=investor.start_time,
            as_of=as_of
        )

    def accrued_interest(self, address: str) -> int:
        """Interest earned so far by an active deposit, 0 if none"""
        return self.quote(address).interest

    def get_summary(self) -> Dict[str, Any]:
        """Get bank configuration and custody totals"""
        state = self._load_state()
        return {
            'address': self.address,
            'credit_ledger_address': state.credit_ledger_address,
            'yearly_return_rate': state.yearly_return_rate,
            'deployer': state.deployer,
            'custodial_balance': self.custodial_balance
        }

    # Writes

    def deposit(self, caller: str, value: int) -> Investor:
        """
        Lock value with the bank

        Args:
            caller: Depositing address
            value: Attached native currency, in wei

        Returns:
            The new active deposit record

        Raises:
            BelowMinimum: If value is under one ether
            DuplicateActiveDeposit: If caller already has an active deposit
            InsufficientBalance: If caller cannot fund value
        """
        require_address(caller)
        require_amount(value)
        with self.chain.call():
            if value < MINIMUM_DEPOSIT:
                raise BelowMinimum()

            investor = self.investors(caller)
            if investor.has_active_deposit:
                raise DuplicateActiveDeposit()

            self.chain.transfer_value(caller, self.address, value)

            investor.has_active_deposit = True
            investor.amount = value
            investor.start_time = self.chain.timestamp()
            self._save_investor(investor)

            self.audit_trail.log_event(
                event_type=AuditEventType.DEPOSIT_MADE,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={
                    'investor': caller,
                    'amount': value,
                    'start_time': investor.start_time
                },
                user_id=caller
            )

        logger.info("Deposit of %d wei by %s into %s", value, caller, self.address)
        return investor

    def withdraw(self, caller: str) -> WithdrawalReceipt:
        """
        Return the caller's principal and mint the interest earned

        Principal, interest and the cleared record are one unit: if minting
        fails, the principal stays with the bank and the deposit stays active.

        Returns:
            WithdrawalReceipt with the amounts paid

        Raises:
            NoActiveDeposit: If caller has no active deposit
            Unauthorized: If the bank does not hold the minter role
        """
        require_address(caller)
        with self.chain.call():
            investor = self.investors(caller)
            if not investor.has_active_deposit:
                raise NoActiveDeposit()

            quote = self.quote(caller)
            principal = investor.amount

            self.chain.transfer_value(self.address, caller, principal)
            self.credit_ledger.mint(self.address, caller, quote.interest)

            investor.has_active_deposit = False
            investor.amount = 0
            self._save_investor(investor)

            self.audit_trail.log_event(
                event_type=AuditEventType.WITHDRAWAL_MADE,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={
                    'investor': caller,
                    'principal': principal,
                    'interest': quote.interest,
                    'elapsed_seconds': quote.elapsed_seconds
                },
                user_id=caller
            )

        logger.info(
            "Withdrawal by %s from %s: principal %d wei, interest %d",
            caller, self.address, principal, quote.interest
        )
        return WithdrawalReceipt(
            address=caller,
            principal=principal,
            interest=quote.interest,
            elapsed_seconds=quote.elapsed_seconds,
            withdrawn_at=quote.as_of
        )
