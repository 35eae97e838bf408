"""
Identity Registry Module

Authoritative source of participant verification (KYC) state. Participants
submit a name and national id; the configured administrator approves or
rejects. Only verified holders (or the administrator) may open campaigns.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import re
import threading

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, AuthorizationError, NotFoundError, AlreadyVerifiedError
from .events import EventDispatcher, EventPayload, DomainEvent
from .locking import KeyedLock
from .logging_config import get_logger, log_action


NATIONAL_ID_LENGTH = 13
_NATIONAL_ID_PATTERN = re.compile(r'[0-9]{%d}' % NATIONAL_ID_LENGTH)


class IdentityStatus(Enum):
    """Review status derived from an identity record"""
    NONE = "none"           # Never submitted
    PENDING = "pending"     # Submitted, awaiting admin review
    VERIFIED = "verified"   # Approved by the administrator
    REJECTED = "rejected"   # Rejected; the holder may resubmit


@dataclass
class IdentityRecord(StorageRecord):
    """
    Verification record of one holder. ``id`` is the holder key.
    """
    full_name: str = ""
    national_id: str = ""
    verified: bool = False
    exists: bool = True
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    sequence: int = 0  # First-submission order, starting at 1

    @property
    def holder(self) -> str:
        return self.id

    @property
    def status(self) -> IdentityStatus:
        if not self.exists:
            return IdentityStatus.NONE
        if self.verified:
            return IdentityStatus.VERIFIED
        if self.rejected_at:
            return IdentityStatus.REJECTED
        return IdentityStatus.PENDING

    @property
    def masked_national_id(self) -> str:
        """National id with all but the last four digits hidden"""
        if not self.national_id:
            return ""
        return "*" * (len(self.national_id) - 4) + self.national_id[-4:]

    @classmethod
    def empty(cls, holder: str) -> 'IdentityRecord':
        """Placeholder returned for holders that never submitted"""
        epoch = datetime.fromtimestamp(0, timezone.utc)
        return cls(id=holder, created_at=epoch, updated_at=epoch, exists=False)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        for key in ('submitted_at', 'verified_at', 'rejected_at'):
            value = getattr(self, key)
            result[key] = value.isoformat() if value else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IdentityRecord':
        data = dict(data)
        for key in ('submitted_at', 'verified_at', 'rejected_at'):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)


def _normalize_holder(holder: str) -> str:
    if not isinstance(holder, str) or not holder.strip():
        raise ValidationError("Holder identity is required", {"holder": holder})
    return holder.strip()


class IdentityRegistry:
    """
    Manages identity submission and administrator review
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        admin_holder: str,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        if not admin_holder or not admin_holder.strip():
            raise ValueError("An administrator identity is required")

        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "identities"
        self._admin = admin_holder.strip()
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("escrow.identity")

        self._holder_locks = KeyedLock()
        self._index_lock = threading.Lock()
        self._order: List[str] = self._load_order()

    @property
    def admin(self) -> str:
        """The designated administrator identity"""
        return self._admin

    def is_admin(self, holder: Optional[str]) -> bool:
        return isinstance(holder, str) and holder.strip() == self._admin

    def submit(self, holder: str, full_name: str, national_id: str) -> IdentityRecord:
        """
        Submit (or resubmit) an identity record for review

        Args:
            holder: Submitting participant
            full_name: Participant's full name
            national_id: 13-digit national identity number

        Returns:
            The stored, unverified IdentityRecord

        Raises:
            ValidationError: Empty name or malformed national id
            AlreadyVerifiedError: The holder is already verified
        """
        holder = _normalize_holder(holder)
        if not isinstance(full_name, str) or not full_name.strip():
            raise ValidationError("Full name is required", {"field": "full_name"})
        if not isinstance(national_id, str) or not _NATIONAL_ID_PATTERN.fullmatch(national_id):
            raise ValidationError(
                f"National id must be exactly {NATIONAL_ID_LENGTH} digits",
                {"field": "national_id"}
            )
        full_name = full_name.strip()

        with self._holder_locks.hold(holder):
            existing = self._load(holder)
            if existing and existing.verified:
                raise AlreadyVerifiedError(
                    f"Identity {holder} is already verified", {"holder": holder}
                )

            now = datetime.now(timezone.utc)
            if existing:
                existing.full_name = full_name
                existing.national_id = national_id
                existing.submitted_at = now
                existing.rejected_at = None
                existing.updated_at = now
                record = existing
                self._commit(record, AuditEventType.KYC_SUBMITTED, holder, resubmission=True)
            else:
                with self._index_lock:
                    record = IdentityRecord(
                        id=holder,
                        created_at=now,
                        updated_at=now,
                        full_name=full_name,
                        national_id=national_id,
                        submitted_at=now,
                        sequence=len(self._order) + 1
                    )
                    self._commit(record, AuditEventType.KYC_SUBMITTED, holder, resubmission=False)
                    self._order.append(holder)

        self._publish(DomainEvent.KYC_SUBMITTED, record, holder)
        return record

    def approve(self, actor: str, holder: str) -> IdentityRecord:
        """
        Mark a holder as verified (administrator only)

        Re-approving a verified record is a no-op that returns it unchanged.
        """
        self._require_admin(actor, "approve")
        holder = _normalize_holder(holder)

        with self._holder_locks.hold(holder):
            record = self._require_record(holder)
            if record.verified:
                self.logger.debug(f"Identity {holder} already verified; approval ignored")
                return record

            now = datetime.now(timezone.utc)
            record.verified = True
            record.verified_at = now
            record.rejected_at = None
            record.updated_at = now
            self._commit(record, AuditEventType.KYC_APPROVED, actor)

        self._publish(DomainEvent.KYC_APPROVED, record, actor)
        return record

    def reject(self, actor: str, holder: str) -> IdentityRecord:
        """Mark a holder as not verified (administrator only); the record is kept"""
        self._require_admin(actor, "reject")
        holder = _normalize_holder(holder)

        with self._holder_locks.hold(holder):
            record = self._require_record(holder)

            now = datetime.now(timezone.utc)
            record.verified = False
            record.verified_at = None
            record.rejected_at = now
            record.updated_at = now
            self._commit(record, AuditEventType.KYC_REJECTED, actor)

        self._publish(DomainEvent.KYC_REJECTED, record, actor)
        return record

    def is_verified(self, holder: str) -> bool:
        """True only for holders whose record is verified; never raises"""
        if not isinstance(holder, str) or not holder.strip():
            return False
        record = self._load(holder.strip())
        return bool(record and record.verified)

    def get_record(self, holder: str) -> Tuple[IdentityRecord, bool]:
        """Get ``(record, exists)``; unknown holders give an empty record"""
        holder = _normalize_holder(holder)
        record = self._load(holder)
        if record is None:
            return IdentityRecord.empty(holder), False
        return record, True

    def list_all(self) -> List[str]:
        """Holders that have ever submitted, in first-submission order"""
        with self._index_lock:
            return list(self._order)

    def list_records(self) -> List[IdentityRecord]:
        """Identity records in first-submission order (admin review queue)"""
        # One load_all read: a concurrent review is seen entirely or not at all
        records = [IdentityRecord.from_dict(data) for data in self.storage.load_all(self.table_name)]
        records.sort(key=lambda r: r.sequence)
        return records

    def _require_admin(self, actor: str, action: str) -> None:
        if not self.is_admin(actor):
            log_action(
                self.logger, "warning", f"Rejected non-admin {action} attempt",
                user_id=actor, action=f"kyc_{action}_denied"
            )
            raise AuthorizationError(
                f"Only the administrator may {action} identities", {"actor": actor}
            )

    def _require_record(self, holder: str) -> IdentityRecord:
        record = self._load(holder)
        if not record:
            raise NotFoundError(f"No identity submitted for {holder}", {"holder": holder})
        return record

    def _load(self, holder: str) -> Optional[IdentityRecord]:
        data = self.storage.load(self.table_name, holder)
        if data:
            return IdentityRecord.from_dict(data)
        return None

    def _load_order(self) -> List[str]:
        records = self.storage.load_all(self.table_name)
        records.sort(key=lambda r: r.get('sequence', 0))
        return [r['id'] for r in records]

    def _commit(self, record: IdentityRecord, event_type: AuditEventType, actor: str, **metadata) -> None:
        """Persist the record and its audit event together"""
        with self.storage.atomic():
            self.storage.save(self.table_name, record.id, record.to_dict())
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="identity",
                entity_id=record.id,
                user_id=actor,
                metadata={
                    "full_name": record.full_name,
                    "national_id": record.masked_national_id,
                    "verified": record.verified,
                    **metadata
                }
            )

        log_action(
            self.logger, "info", f"Identity {event_type.value}: {record.id}",
            user_id=actor, action=event_type.value, resource=f"identity:{record.id}"
        )

    def _publish(self, event_type: DomainEvent, record: IdentityRecord, actor: str) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=event_type,
                entity_type="identity",
                entity_id=record.id,
                actor=actor,
                data={"verified": record.verified, "status": record.status.value}
            ))
