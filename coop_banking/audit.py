"""
Audit Trail Module

Append-only record of every loan and installment state change. Each event
stores the SHA-256 digest of its predecessor, so editing or removing a stored
event breaks the chain. Events are written through the same storage as the
change they describe and therefore commit or roll back with it.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface, StorageRecord, serialize_value


class AuditEventType(Enum):
    """Audited state changes"""
    LOAN_APPLIED = "loan_applied"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    INSTALLMENTS_SCHEDULED = "installments_scheduled"
    INSTALLMENT_PAYMENT_RECORDED = "installment_payment_recorded"
    INSTALLMENT_PAID = "installment_paid"


def _plain(value: Any) -> Any:
    """Reduce metadata to JSON types"""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return serialize_value(value)


@dataclass
class AuditEvent(StorageRecord):
    """One link of the audit chain"""
    event_type: AuditEventType
    entity_type: str            # "loan" or "installment"
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = _plain(self.metadata or {})

    def digest(self) -> str:
        """SHA-256 over every field except ``current_hash`` itself"""
        payload = json.dumps(
            {
                'id': self.id,
                'created_at': self.created_at.isoformat(),
                'event_type': self.event_type.value,
                'entity': f"{self.entity_type}:{self.entity_id}",
                'previous_hash': self.previous_hash,
                'user_id': self.user_id,
                'metadata': self.metadata
            },
            sort_keys=True,
            separators=(',', ':')
        )
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.digest()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data.pop('sequence', None)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit log stored in one table.

    Records carry a ``sequence`` number that fixes chain order independently
    of timestamps. The newest sequence and hash are also kept in a one-row
    head table, read and rewritten in the same transaction as each append,
    so appending never scans the log and two writers cannot fork the chain.
    """

    HEAD_ID = "head"

    def __init__(
        self,
        storage: StorageInterface,
        table_name: str = "audit_events",
        head_table: str = "audit_head"
    ):
        self.storage = storage
        self.table_name = table_name
        self.head_table = head_table

    def _records_in_order(self) -> List[Dict[str, Any]]:
        records = self.storage.load_all(self.table_name)
        records.sort(key=lambda record: record.get('sequence', 0))
        return records

    def _head(self) -> Dict[str, Any]:
        head = self.storage.load(self.head_table, self.HEAD_ID)
        if head is None:
            # Logs written before the head table existed
            records = self._records_in_order()
            if records:
                return {'sequence': records[-1].get('sequence', 0), 'hash': records[-1].get('current_hash', "")}
            return {'sequence': -1, 'hash': ""}
        return head

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

        The head is read inside the storage transaction, so an event that
        was rolled back never becomes anyone's predecessor.
        """
        with self.storage.atomic():
            head = self._head()
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head['hash'],
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.digest()

            sequence = head['sequence'] + 1
            record = event.to_dict()
            record['sequence'] = sequence
            self.storage.save(self.table_name, event.id, record)
            self.storage.save(self.head_table, self.HEAD_ID, {'sequence': sequence, 'hash': event.current_hash})
            return event

    def events(self) -> List[AuditEvent]:
        """Whole chain, oldest first"""
        return [AuditEvent.from_dict(record) for record in self._records_in_order()]

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Events of one loan or installment, oldest first; ``limit`` keeps the newest"""
        matching = [
            event for event in self.events()
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]
        return matching[-limit:] if limit else matching

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [event for event in self.events() if event.event_type == event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the chain and report tampering

        Returns:
            ``valid`` flag, ``total_events``, events whose stored hash no
            longer matches their content (``hash_errors``) and events whose
            predecessor link is wrong (``chain_breaks``)
        """
        chain = self.events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(chain):
            if not event.verify_hash():
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'stored_hash': event.current_hash,
                    'computed_hash': event.digest()
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_link': expected_previous,
                    'stored_link': event.previous_hash
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(chain),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
