"""
Execution Environment

The chain owns everything the two ledgers share: native currency balances,
the clock that stamps each call, the contract registry and the sequencer.
Every external call runs inside call(), which holds one process-wide
re-entrant lock and one storage transaction. Calls are therefore serialized,
and a call that raises leaves no trace in storage.
"""

import logging
import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .errors import InsufficientBalance, require_address, require_amount
from .storage import StorageInterface, InMemoryStorage


logger = logging.getLogger(__name__)


def new_address() -> str:
    """Generate a fresh 20-byte hex address"""
    return "0x" + secrets.token_hex(20)


class Chain:
    """
    Single-sequencer execution environment for the bank and its token

    Attributes:
        storage: Backend holding every ledger table
        clock: Source of block timestamps
        audit_trail: Hash-chained log of every state change
    """

    BALANCES_TABLE = "native_balances"
    CONTRACTS_TABLE = "contracts"

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or SystemClock()
        self.audit_trail = audit_trail or AuditTrail(self.storage)
        self._contracts: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @contextmanager
    def call(self):
        """
        Run one atomic, serialized unit of work

        Nested calls (a contract calling another contract) join the outer
        unit; only the outermost one commits.
        """
        with self._lock:
            with self.storage.atomic():
                yield

    def timestamp(self) -> int:
        """Current block timestamp in seconds"""
        return self.clock.timestamp()

    def now(self) -> datetime:
        """Current block time as an aware datetime"""
        return self.clock.now()

    # Native currency

    def get_balance(self, address: str) -> int:
        """Native currency balance of an address, in wei"""
        record = self.storage.load(self.BALANCES_TABLE, address)
        if record:
            return record['balance']
        return 0

    def _set_balance(self, address: str, balance: int) -> None:
        self.storage.save(self.BALANCES_TABLE, address, {
            'address': address,
            'balance': balance,
            'updated_at': datetime.now(timezone.utc).isoformat()
        })

    def create_account(self, balance: int = 0) -> str:
        """Create a new externally owned address, optionally pre-funded"""
        address = new_address()
        if balance:
            self.fund(address, balance)
        return address

    def fund(self, address: str, amount: int) -> int:
        """
        Credit native currency to an address out of thin air

        Only used to set up development and test accounts; bank and token
        calls never mint native currency.
        """
        require_address(address)
        require_amount(amount)
        with self.call():
            new_balance = self.get_balance(address) + amount
            self._set_balance(address, new_balance)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_FUNDED,
                entity_type="account",
                entity_id=address,
                metadata={'amount': amount, 'balance': new_balance}
            )
        return new_balance

    def transfer_value(self, sender: str, to: str, amount: int) -> None:
        """
        Move native currency between two addresses

        Raises:
            InsufficientBalance: If the sender holds less than amount
        """
        require_address(sender)
        require_address(to)
        require_amount(amount)
        with self.call():
            sender_balance = self.get_balance(sender)
            if sender_balance < amount:
                raise InsufficientBalance()
            self._set_balance(sender, sender_balance - amount)
            self._set_balance(to, self.get_balance(to) + amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.VALUE_TRANSFERRED,
                entity_type="account",
                entity_id=sender,
                metadata={'to': to, 'amount': amount},
                user_id=sender
            )
        logger.debug("Transferred %d wei from %s to %s", amount, sender, to)

    # Contracts

    def register_contract(self, contract: Any, kind: str, deployer: str) -> None:
        """Record a deployed contract under its address"""
        with self.call():
            self.storage.save(self.CONTRACTS_TABLE, contract.address, {
                'address': contract.address,
                'kind': kind,
                'deployer': deployer,
                'deployed_at': self.timestamp()
            })
            self.audit_trail.log_event(
                event_type=AuditEventType.CONTRACT_DEPLOYED,
                entity_type=kind,
                entity_id=contract.address,
                metadata={'deployer': deployer},
                user_id=deployer
            )
        self._contracts[contract.address] = contract
        logger.info("Deployed %s at %s", kind, contract.address)

    def attach_contract(self, contract: Any) -> None:
        """Register an already deployed contract object with this process"""
        self._contracts[contract.address] = contract

    def contract_at(self, address: str) -> Optional[Any]:
        """Get the contract object deployed at an address"""
        return self._contracts.get(address)

    def list_contracts(self) -> List[Dict[str, Any]]:
        """Get stored deployment records"""
        return self.storage.load_all(self.CONTRACTS_TABLE)
