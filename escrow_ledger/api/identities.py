"""
Identity (KYC) endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import EscrowSystem, get_escrow_system, get_current_holder
from .schemas import SubmitIdentityRequest, identity_to_dict


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def submit_identity(
    request: SubmitIdentityRequest,
    holder: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Submit (or resubmit) the caller's identity for review"""
    record = system.identity_registry.submit(holder, request.full_name, request.national_id)
    return identity_to_dict(record)


@router.get("")
def list_identities(system: EscrowSystem = Depends(get_escrow_system)):
    """Submitted identities in first-submission order"""
    records = system.identity_registry.list_records()
    return {
        "admin": system.identity_registry.admin,
        "identities": [identity_to_dict(record) for record in records]
    }


@router.get("/{holder}")
def get_identity(holder: str, system: EscrowSystem = Depends(get_escrow_system)):
    """Get a holder's identity record; unknown holders report exists=false"""
    record, exists = system.identity_registry.get_record(holder)
    return identity_to_dict(record, exists)


@router.post("/{holder}/approve")
def approve_identity(
    holder: str,
    actor: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Approve a holder's identity (administrator only)"""
    record = system.identity_registry.approve(actor, holder)
    return identity_to_dict(record)


@router.post("/{holder}/reject")
def reject_identity(
    holder: str,
    actor: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Reject a holder's identity (administrator only)"""
    record = system.identity_registry.reject(actor, holder)
    return identity_to_dict(record)
