"""
Audit Trail Module

Append-only log of every state change on the chain. Each event carries its
position in the log and the SHA-256 hash of its predecessor, so editing,
removing or reordering stored events is detectable by verify_integrity().

Events are written inside the same storage transaction as the change they
describe; a rolled back call leaves no events behind and the next event
continues from the last committed one.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    CONTRACT_DEPLOYED = "contract_deployed"

    # Native currency
    ACCOUNT_FUNDED = "account_funded"
    VALUE_TRANSFERRED = "value_transferred"

    # Deposit bank
    DEPOSIT_MADE = "deposit_made"
    WITHDRAWAL_MADE = "withdrawal_made"

    # Credit ledger
    CREDIT_MINTED = "credit_minted"
    CREDIT_TRANSFERRED = "credit_transferred"
    CREDIT_APPROVED = "credit_approved"
    MINTER_ROLE_PASSED = "minter_role_passed"


def _to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """One link of the audit chain"""
    event_type: AuditEventType
    entity_type: str  # credit_ledger, deposit_bank, account
    entity_id: str
    sequence: int     # 1-based position in the chain
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # calling address

    def __post_init__(self):
        # Hashing needs metadata in the exact form it is stored in
        self.metadata = _to_json_value(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash, as canonical JSON"""
        payload = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        fields = dict(data)
        if isinstance(fields['event_type'], str):
            fields['event_type'] = AuditEventType(fields['event_type'])
        return super().from_dict(fields)


class AuditTrail:
    """
    Hash-chained audit trail

    The chain head (hash and sequence of the newest event) is a stored
    record next to the events, so it rolls back with them.
    """

    HEAD_ID = "head"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"
        self._lock = threading.Lock()

    def _head(self) -> Dict[str, Any]:
        return self.storage.load(self.head_table, self.HEAD_ID) or {'last_hash': "", 'sequence': 0}

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an event to the chain

        Args:
            event_type: What happened
            entity_type: Kind of contract or account affected
            entity_id: Address of the affected entity
            metadata: Event-specific amounts and addresses
            user_id: Address that made the call

        Returns:
            The stored AuditEvent
        """
        with self._lock:
            head = self._head()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=head['sequence'] + 1,
                previous_hash=head['last_hash'],
                current_hash="",
                metadata=metadata,
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                'last_hash': event.current_hash,
                'sequence': event.sequence
            })
        return event

    # Queries

    def _events(self, predicate: Optional[Callable[[AuditEvent], bool]] = None,
                limit: Optional[int] = None) -> List[AuditEvent]:
        events = sorted(
            (AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)),
            key=lambda e: e.sequence
        )
        if predicate:
            events = [e for e in events if predicate(e)]
        if limit is not None:
            if limit < 1:
                raise ValueError(f"limit must be at least 1, got {limit}")
            events = events[-limit:]  # most recent N
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events about one contract or account, oldest first"""
        return self._events(
            lambda e: e.entity_type == entity_type and e.entity_id == entity_id, limit
        )

    def get_events_by_type(self, event_type: AuditEventType,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        return self._events(lambda e: e.event_type == event_type, limit)

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        return self._events(limit=limit)

    def get_event_by_id(self, event_id: str) -> Optional[AuditEvent]:
        data = self.storage.load(self.table_name, event_id)
        return AuditEvent.from_dict(data) if data else None

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Hash of the newest event, None for an empty trail"""
        return self._head()['last_hash'] or None

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the whole chain and report every broken link

        An event has a hash error when its stored hash does not match its
        contents, and breaks the chain when it does not point at the hash of
        the event before it or sits at the wrong position.

        Returns:
            Dictionary with valid, total_events, hash_errors, chain_breaks and
            details (time span, event and entity types seen)
        """
        events = self._events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            actual = event.calculate_hash()
            if event.current_hash != actual:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': actual,
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous or event.sequence != position + 1:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        details = {}
        if events:
            details = {
                'first_event_time': events[0].created_at.isoformat(),
                'last_event_time': events[-1].created_at.isoformat(),
                'event_types': sorted({e.event_type.value for e in events}),
                'entity_types': sorted({e.entity_type for e in events})
            }

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks,
            'details': details
        }
