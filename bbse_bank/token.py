"""
Credit Token Ledger

Fungible-balance ledger for the credit token the bank pays interest in.
Anyone can hold and transfer credit; only the single address holding the
minter role can create new credit. The role starts with the deploying address
and moves with pass_minter_role, always as one record write, so exactly one
address holds it at any instant.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any

from .audit import AuditEventType
from .chain import Chain, new_address
from .errors import (
    Unauthorized, InsufficientBalance, InsufficientAllowance, InvalidAddress,
    require_address, require_amount
)
from .storage import StorageRecord
from .units import ETHER_DECIMALS


logger = logging.getLogger(__name__)


@dataclass
class CreditLedgerState(StorageRecord):
    """Global state of one credit ledger, keyed by its address"""
    name: str
    symbol: str
    decimals: int
    deployer: str
    minter: str
    total_supply: int = 0


class CreditLedger:
    """
    Credit token with a role-gated mint

    All mutating methods take the calling address explicitly and run as one
    atomic call on the chain.
    """

    KIND = "credit_ledger"
    STATE_TABLE = "credit_ledgers"
    BALANCES_TABLE = "credit_balances"
    ALLOWANCES_TABLE = "credit_allowances"

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
        name: str = "BBSE Token",
        symbol: str = "BBSE",
        decimals: int = ETHER_DECIMALS
    ) -> 'CreditLedger':
        """Create a new credit ledger whose first minter is the deployer"""
        require_address(deployer)
        ledger = cls(chain, new_address())
        now = datetime.now(timezone.utc)
        with chain.call():
            state = CreditLedgerState(
                id=ledger.address,
                created_at=now,
                updated_at=now,
                name=name,
                symbol=symbol,
                decimals=decimals,
                deployer=deployer,
                minter=deployer
            )
            ledger._save_state(state)
            chain.register_contract(ledger, cls.KIND, deployer)
        return ledger

    @classmethod
    def at(cls, chain: Chain, address: str) -> 'CreditLedger':
        """
        Get the credit ledger deployed at an address

        Raises:
            InvalidAddress: If no credit ledger lives there
        """
        contract = chain.contract_at(address)
        if isinstance(contract, cls):
            return contract
        if not chain.storage.exists(cls.STATE_TABLE, address):
            raise InvalidAddress(f"No credit ledger deployed at {address}")
        # Persisted by an earlier process; re-attach it
        ledger = cls(chain, address)
        chain.attach_contract(ledger)
        return ledger

    # State helpers

    def _load_state(self) -> CreditLedgerState:
        data = self.storage.load(self.STATE_TABLE, self.address)
        return CreditLedgerState.from_dict(data)

    def _save_state(self, state: CreditLedgerState) -> None:
        state.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.STATE_TABLE, state.id, state.to_dict())

    def _balance_key(self, holder: str) -> str:
        return f"{self.address}:{holder}"

    def _set_balance(self, holder: str, balance: int) -> None:
        self.storage.save(self.BALANCES_TABLE, self._balance_key(holder), {
            'token': self.address,
            'holder': holder,
            'balance': balance
        })

    def _allowance_key(self, owner: str, spender: str) -> str:
        return f"{self.address}:{owner}:{spender}"

    def _move(self, sender: str, to: str, amount: int) -> None:
        sender_balance = self.balance_of(sender)
        if sender_balance < amount:
            raise InsufficientBalance()
        self._set_balance(sender, sender_balance - amount)
        self._set_balance(to, self.balance_of(to) + amount)

    # Reads

    @property
    def name(self) -> str:
        return self._load_state().name

    @property
    def symbol(self) -> str:
        return self._load_state().symbol

    @property
    def decimals(self) -> int:
        return self._load_state().decimals

    @property
    def minter(self) -> str:
        """Address currently holding the minter role"""
        return self._load_state().minter

    @property
    def total_supply(self) -> int:
        return self._load_state().total_supply

    def balance_of(self, holder: str) -> int:
        """Credit balance of an address"""
        record = self.storage.load(self.BALANCES_TABLE, self._balance_key(holder))
        if record:
            return record['balance']
        return 0

    def allowance(self, owner: str, spender: str) -> int:
        """Amount spender may still move out of owner's balance"""
        record = self.storage.load(self.ALLOWANCES_TABLE, self._allowance_key(owner, spender))
        if record:
            return record['amount']
        return 0

    def get_summary(self) -> Dict[str, Any]:
        """Get token metadata and supply"""
        state = self._load_state()
        return {
            'address': self.address,
            'name': state.name,
            'symbol': state.symbol,
            'decimals': state.decimals,
            'minter': state.minter,
            'total_supply': state.total_supply
        }

    # Writes

    def mint(self, caller: str, to: str, amount: int) -> int:
        """
        Create new credit for an address

        Args:
            caller: Address making the call; must hold the minter role
            to: Recipient of the new credit
            amount: Credit to create, in the smallest unit

        Returns:
            Recipient's new balance

        Raises:
            Unauthorized: If caller is not the minter
        """
        with self.chain.call():
            state = self._load_state()
            if caller != state.minter:
                logger.warning("Rejected mint by non-minter %s on %s", caller, self.address)
                raise Unauthorized("Caller is not the minter")
            require_address(to)
            require_amount(amount)

            new_balance = self.balance_of(to) + amount
            self._set_balance(to, new_balance)
            state.total_supply += amount
            self._save_state(state)

            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_MINTED,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={'to': to, 'amount': amount, 'balance': new_balance},
                user_id=caller
            )

        logger.info("Minted %d %s to %s", amount, state.symbol, to)
        return new_balance

    def transfer(self, caller: str, to: str, amount: int) -> None:
        """
        Move credit from the caller to another address

        Raises:
            InsufficientBalance: If caller holds less than amount
        """
        require_address(caller)
        require_address(to)
        require_amount(amount)
        with self.chain.call():
            self._move(caller, to, amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_TRANSFERRED,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={'from': caller, 'to': to, 'amount': amount},
                user_id=caller
            )

    def approve(self, caller: str, spender: str, amount: int) -> None:
        """Allow spender to move up to amount of the caller's credit"""
        require_address(caller)
        require_address(spender)
        require_amount(amount)
        with self.chain.call():
            self.storage.save(self.ALLOWANCES_TABLE, self._allowance_key(caller, spender), {
                'token': self.address,
                'owner': caller,
                'spender': spender,
                'amount': amount
            })
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_APPROVED,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={'owner': caller, 'spender': spender, 'amount': amount},
                user_id=caller
            )

    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> None:
        """
        Move credit out of owner's balance using caller's allowance

        Raises:
            InsufficientAllowance: If caller's allowance is below amount
            InsufficientBalance: If owner holds less than amount
        """
        require_address(caller)
        require_address(owner)
        require_address(to)
        require_amount(amount)
        with self.chain.call():
            remaining = self.allowance(owner, caller)
            if remaining < amount:
                raise InsufficientAllowance()
            self._move(owner, to, amount)
            self.storage.save(self.ALLOWANCES_TABLE, self._allowance_key(owner, caller), {
                'token': self.address,
                'owner': owner,
                'spender': caller,
                'amount': remaining - amount
            })
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_TRANSFERRED,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={'from': owner, 'to': to, 'amount': amount, 'spender': caller},
                user_id=caller
            )

    def pass_minter_role(self, caller: str, new_minter: str) -> None:
        """
        Hand the minter role to another address

        Whoever holds the role may pass it on, including a bank that received
        it from the deployer.

        Raises:
            Unauthorized: If caller is not the current minter
            InvalidAddress: If new_minter is blank
        """
        with self.chain.call():
            state = self._load_state()
            if caller != state.minter:
                logger.warning("Rejected minter hand-off by %s on %s", caller, self.address)
                raise Unauthorized("Only the minter can pass the minter role")
            require_address(new_minter)

            previous = state.minter
            state.minter = new_minter
            self._save_state(state)

            self.audit_trail.log_event(
                event_type=AuditEventType.MINTER_ROLE_PASSED,
                entity_type=self.KIND,
                entity_id=self.address,
                metadata={'previous_minter': previous, 'new_minter': new_minter},
                user_id=caller
            )

        logger.info("Minter role on %s passed from %s to %s", self.address, previous, new_minter)
