"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict
from pydantic import BaseModel, Field

from ..currency import Denomination, format_amount
from ..identity import IdentityRecord
from ..campaigns import Campaign, Contribution


class AmountModel(BaseModel):
    units: str = Field(..., description="Integer amount in the smallest unit, as string")
    display: str = Field(..., description="Decimal amount in the denomination")
    currency: str = Field(..., description="Denomination code (ETH, GWEI, ...)")

    @classmethod
    def from_units(cls, units: int, denomination: Denomination) -> 'AmountModel':
        return cls(
            units=str(units),
            display=format_amount(units, denomination),
            currency=denomination.code
        )


# Identity schemas
class SubmitIdentityRequest(BaseModel):
    full_name: str
    national_id: str = Field(..., description="13-digit national identity number")


# Campaign schemas
class CreateCampaignRequest(BaseModel):
    title: str
    description: str
    goal: str = Field(..., description="Funding goal as decimal string in the configured denomination")


class ContributeRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")


class ResolveWithdrawalRequest(BaseModel):
    transferred: bool = Field(..., description="Whether the payout service confirms the funds moved")


def identity_to_dict(record: IdentityRecord, exists: bool = True) -> Dict[str, Any]:
    """Identity record as returned by the API; the national id is masked"""
    return {
        "holder": record.holder,
        "exists": exists,
        "status": record.status.value,
        "verified": record.verified,
        "full_name": record.full_name,
        "national_id": record.masked_national_id,
        "submitted_at": record.submitted_at.isoformat() if record.submitted_at else None,
        "verified_at": record.verified_at.isoformat() if record.verified_at else None,
        "rejected_at": record.rejected_at.isoformat() if record.rejected_at else None
    }


def campaign_to_dict(campaign: Campaign, denomination: Denomination) -> Dict[str, Any]:
    return {
        "id": campaign.id,
        "title": campaign.title,
        "description": campaign.description,
        "creator": campaign.creator,
        "goal_amount": AmountModel.from_units(campaign.goal_amount, denomination).model_dump(),
        "funds_raised": AmountModel.from_units(campaign.funds_raised, denomination).model_dump(),
        "progress_percent": campaign.progress_percent,
        "status": campaign.status.value,
        "contribution_count": campaign.contribution_count,
        "pending_withdrawal": campaign.pending_withdrawal,
        "created_at": campaign.created_at.isoformat(),
        "goal_reached_at": campaign.goal_reached_at.isoformat() if campaign.goal_reached_at else None,
        "withdrawn_at": campaign.withdrawn_at.isoformat() if campaign.withdrawn_at else None
    }


def contribution_to_dict(entry: Contribution, denomination: Denomination) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "sequence": entry.sequence,
        "contributor": entry.contributor,
        "amount": AmountModel.from_units(entry.amount, denomination).model_dump(),
        "resulting_total": AmountModel.from_units(entry.resulting_total, denomination).model_dump(),
        "created_at": entry.created_at.isoformat()
    }
