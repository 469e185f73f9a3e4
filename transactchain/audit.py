"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every account lifecycle change and every transfer outcome is logged here.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .errors import TryAgain
from .logging_config import get_logger
from .storage import (
    StorageInterface, StorageRecord, WriteOp, RecordExistsError, StaleRecordError
)


class AuditEventType(Enum):
    """Types of audit events"""
    # Account events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_DELETION_REJECTED = "account_deletion_rejected"

    # Transfer events
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_REJECTED = "transfer_rejected"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int
    event_type: AuditEventType
    entity_type: str  # account or transaction
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    actor_id: Optional[str] = None  # Account that initiated the action

    def __post_init__(self):
        if self.metadata:
            self._serialize_metadata()

    def _serialize_metadata(self) -> None:
        """Convert metadata values to JSON-serializable format"""
        def convert_value(value):
            if isinstance(value, Decimal):
                return str(value)
            elif isinstance(value, datetime):
                return value.isoformat()
            elif isinstance(value, Enum):
                return value.value
            elif isinstance(value, dict):
                return {k: convert_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [convert_value(v) for v in value]
            else:
                return value

        self.metadata = {k: convert_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'actor_id': self.actor_id,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection

    The chain head (latest hash and sequence) lives in its own record and is
    advanced by compare-and-write in the same batch as the event, so trails
    sharing one store from different processes still build a single chain.
    """

    MAX_APPEND_ATTEMPTS = 5

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self.head_table = "audit_head"
        self._lock = threading.Lock()
        self.logger = get_logger("transactchain.audit")

    def _read_head(self) -> Dict[str, Any]:
        """Current chain head; version 0 means no head record is stored yet"""
        head = self.storage.load(self.head_table, self.table_name)
        if head is not None:
            return head

        # Events written before the head record existed
        events = self.storage.load_all(self.table_name)
        latest = max(events, key=lambda x: x.get('sequence', 0), default=None)
        return {
            'id': self.table_name,
            'current_hash': latest.get('current_hash', "") if latest else "",
            'sequence': latest.get('sequence', 0) if latest else 0,
            'version': 0
        }

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            actor_id: Account that initiated the action

        Returns:
            Created AuditEvent

        Raises:
            TryAgain: another writer kept advancing the chain head
        """
        with self._lock:
            for attempt in range(self.MAX_APPEND_ATTEMPTS):
                head = self._read_head()
                now = datetime.now(timezone.utc)

                event = AuditEvent(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    sequence=head['sequence'] + 1,
                    event_type=event_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    previous_hash=head['current_hash'],
                    current_hash="",  # Calculated below
                    actor_id=actor_id,
                    metadata=metadata or {}
                )
                event.current_hash = event.calculate_hash()

                new_head = {
                    'id': self.table_name,
                    'current_hash': event.current_hash,
                    'sequence': event.sequence,
                    'version': head['version'] + 1
                }
                if head['version'] == 0:
                    head_op = WriteOp(self.head_table, self.table_name, new_head,
                                      must_not_exist=True)
                else:
                    head_op = WriteOp(self.head_table, self.table_name, new_head,
                                      expected_version=head['version'])

                try:
                    self.storage.save_batch([
                        WriteOp(self.table_name, event.id, event.to_dict(), must_not_exist=True),
                        head_op
                    ])
                    return event
                except (StaleRecordError, RecordExistsError):
                    self.logger.debug(
                        f"Audit chain head moved, retrying (attempt {attempt + 1})"
                    )

            raise TryAgain("Audit chain is busy, try again")

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda x: x.sequence)
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for a specific entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        return [e for e in self._load_events() if e.event_type == event_type]

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get all audit events, oldest first; limit keeps the most recent N"""
        events = self._load_events()
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Get the hash of the most recent audit event"""
        return self._read_head()["current_hash"] or None
