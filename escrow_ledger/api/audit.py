"""
Audit trail and event feed endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from .auth import EscrowSystem, get_escrow_system
from ..audit import AuditEventType
from ..errors import ValidationError


router = APIRouter()


@router.get("/events")
def get_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Audit events in chain order, optionally filtered"""
    trail = system.audit_trail

    if entity_type and entity_id:
        events = trail.get_events_for_entity(entity_type, entity_id, limit=limit)
    elif event_type:
        try:
            kind = AuditEventType(event_type)
        except ValueError:
            raise ValidationError(f"Unknown audit event type: {event_type}", {"event_type": event_type})
        events = trail.get_events_by_type(kind, limit=limit)
    else:
        events = trail.get_all_events(limit=limit)

    return {
        "events": [
            {
                "id": event.id,
                "sequence": event.sequence,
                "event_type": event.event_type.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "user_id": event.user_id,
                "metadata": event.metadata,
                "created_at": event.created_at.isoformat(),
                "current_hash": event.current_hash
            }
            for event in events
        ]
    }


@router.get("/integrity")
def verify_audit_integrity(system: EscrowSystem = Depends(get_escrow_system)):
    """Verify the audit hash chain"""
    return system.audit_trail.verify_integrity()


@router.get("/feed")
def get_event_feed(
    limit: int = Query(50, ge=1, le=1000),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Most recent committed domain events, newest last"""
    events = system.event_recorder.recent(limit)
    return {"events": [event.to_dict() for event in events]}
