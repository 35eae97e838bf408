"""
Campaign endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import EscrowSystem, get_escrow_system, get_current_holder
from .schemas import (
    CreateCampaignRequest,
    ContributeRequest,
    ResolveWithdrawalRequest,
    AmountModel,
    campaign_to_dict,
    contribution_to_dict
)
from ..currency import parse_amount


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_campaign(
    request: CreateCampaignRequest,
    creator: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Open a campaign; the caller must be verified or the administrator"""
    goal = parse_amount(request.goal, system.denomination)
    campaign_id = system.campaign_ledger.create_campaign(
        creator, request.title, request.description, goal
    )
    campaign = system.campaign_ledger.get_campaign(campaign_id)
    return campaign_to_dict(campaign, system.denomination)


@router.get("")
def list_campaigns(system: EscrowSystem = Depends(get_escrow_system)):
    """All campaigns by id ascending"""
    ledger = system.campaign_ledger
    return {
        "campaigns": [campaign_to_dict(c, system.denomination) for c in ledger.list_all()],
        "escrow_balance": AmountModel.from_units(ledger.escrow_balance(), system.denomination).model_dump()
    }


@router.get("/pending-withdrawals")
def list_pending_withdrawals(system: EscrowSystem = Depends(get_escrow_system)):
    """Campaigns whose withdrawal was reserved but never settled"""
    pending = system.campaign_ledger.list_pending_withdrawals()
    return {"campaigns": [campaign_to_dict(c, system.denomination) for c in pending]}


@router.get("/{campaign_id}")
def get_campaign(campaign_id: int, system: EscrowSystem = Depends(get_escrow_system)):
    """Get campaign by id"""
    campaign = system.campaign_ledger.get_campaign(campaign_id)
    return campaign_to_dict(campaign, system.denomination)


@router.post("/{campaign_id}/contributions")
def contribute(
    campaign_id: int,
    request: ContributeRequest,
    contributor: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Contribute to an active campaign"""
    amount = parse_amount(request.amount, system.denomination)
    total = system.campaign_ledger.contribute(campaign_id, contributor, amount)
    campaign = system.campaign_ledger.get_campaign(campaign_id)
    return {
        "campaign_id": campaign_id,
        "amount": AmountModel.from_units(amount, system.denomination).model_dump(),
        "total": AmountModel.from_units(total, system.denomination).model_dump(),
        "status": campaign.status.value
    }


@router.get("/{campaign_id}/contributions")
def get_contributions(campaign_id: int, system: EscrowSystem = Depends(get_escrow_system)):
    """Accepted contributions of a campaign, oldest first"""
    entries = system.campaign_ledger.get_contributions(campaign_id)
    return {
        "campaign_id": campaign_id,
        "contributions": [contribution_to_dict(e, system.denomination) for e in entries]
    }


@router.post("/{campaign_id}/withdraw")
def withdraw(
    campaign_id: int,
    requester: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Release a funded campaign's total to its creator"""
    amount = system.campaign_ledger.withdraw(campaign_id, requester)
    return {
        "campaign_id": campaign_id,
        "amount": AmountModel.from_units(amount, system.denomination).model_dump(),
        "status": "withdrawn"
    }


@router.post("/{campaign_id}/resolve-withdrawal")
def resolve_withdrawal(
    campaign_id: int,
    request: ResolveWithdrawalRequest,
    actor: str = Depends(get_current_holder),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Settle a pending withdrawal reservation (administrator only)"""
    campaign = system.campaign_ledger.resolve_pending_withdrawal(actor, campaign_id, request.transferred)
    return campaign_to_dict(campaign, system.denomination)
