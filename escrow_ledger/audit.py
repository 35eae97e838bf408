"""
Audit Trail Module

Append-only log of every committed identity and campaign change. Each event
carries the SHA-256 of its own content plus the hash of its predecessor, so
editing, deleting or reordering stored events is detectable.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    # Identity registry
    KYC_SUBMITTED = "kyc_submitted"
    KYC_APPROVED = "kyc_approved"
    KYC_REJECTED = "kyc_rejected"

    # Campaign ledger
    CAMPAIGN_CREATED = "campaign_created"
    CONTRIBUTION_MADE = "contribution_made"
    FUNDS_WITHDRAWN = "funds_withdrawn"
    WITHDRAWAL_FAILED = "withdrawal_failed"
    WITHDRAWAL_RESOLVED = "withdrawal_resolved"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """One link of the audit chain"""
    event_type: AuditEventType
    entity_type: str  # identity or campaign
    entity_id: str    # holder or campaign id
    sequence: int     # 1-based chain position
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # acting holder

    def __post_init__(self):
        self.metadata = _jsonable(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        payload = json.dumps({
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        document = super().to_dict()
        document['event_type'] = self.event_type.value
        return document

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


def _within(events: List[AuditEvent], start_time: Optional[datetime],
            end_time: Optional[datetime], limit: Optional[int]) -> List[AuditEvent]:
    if start_time:
        events = [e for e in events if e.created_at >= start_time]
    if end_time:
        events = [e for e in events if e.created_at <= end_time]
    if limit:
        events = events[-limit:]
    return events


class AuditTrail:
    """
    Hash-chained audit trail.

    The chain head (last hash and sequence) is itself a stored document, so an
    event logged inside ``storage.atomic()`` that later rolls back leaves the
    head where it was.
    """

    HEAD_ID = "head"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"

    def _load_head(self) -> Dict[str, Any]:
        return self.storage.load(self.head_table, self.HEAD_ID) or {
            "id": self.HEAD_ID, "last_hash": "", "sequence": 0
        }

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
            entity_type: "identity" or "campaign"
            entity_id: Holder or campaign id
            metadata: Event details; Decimal, datetime and Enum values are
                stored in their text form
            user_id: Holder who performed the action

        Returns:
            The sealed AuditEvent
        """
        # atomic() serializes appends, so reading and moving the head cannot interleave
        with self.storage.atomic():
            head = self._load_head()
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                sequence=head["sequence"] + 1,
                previous_hash=head["last_hash"],
                current_hash="",
                metadata=metadata,
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                "id": self.HEAD_ID,
                "last_hash": event.current_hash,
                "sequence": event.sequence
            })

        return event

    def _chain(self, **filters) -> List[AuditEvent]:
        documents = self.storage.find(self.table_name, filters) if filters else self.storage.load_all(self.table_name)
        return sorted((AuditEvent.from_dict(d) for d in documents), key=lambda e: e.sequence)

    def get_events_for_entity(self, entity_type: str, entity_id: str, limit: Optional[int] = None) -> List[AuditEvent]:
        """History of one identity or campaign, oldest first (``limit`` keeps the newest)"""
        return _within(self._chain(entity_type=entity_type, entity_id=str(entity_id)), None, None, limit)

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        return _within(self._chain(event_type=event_type.value), start_time, end_time, limit)

    def get_all_events(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        return _within(self._chain(), start_time, end_time, limit)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the whole chain checking every hash and every link

        Returns:
            ``valid``, ``total_events``, ``hash_errors`` (events whose content
            no longer matches their hash), ``chain_breaks`` (events whose
            predecessor is missing or reordered) and summary ``details``
        """
        events = self._chain()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            recomputed = event.calculate_hash()
            if recomputed != event.current_hash:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': recomputed,
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

    def get_event_by_id(self, event_id: str) -> Optional[AuditEvent]:
        document = self.storage.load(self.table_name, event_id)
        return AuditEvent.from_dict(document) if document else None

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Hash of the newest event, or None for an empty trail"""
        return self._load_head()["last_hash"] or None
