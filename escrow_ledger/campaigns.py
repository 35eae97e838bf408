"""
Campaign Ledger Module

Campaign lifecycle and monetary escrow. Contributions accumulate until the
goal is met; the creator then withdraws exactly once. Amounts are integers in
the smallest unit of the configured denomination.

Lifecycle: ACTIVE -> GOAL_REACHED -> WITHDRAWN (forward only).
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    ValidationError, AuthorizationError, NotFoundError, InvalidStateError, TransferError,
    TransferOutcomeUnknownError
)
from .events import EventDispatcher, EventPayload, DomainEvent
from .identity import IdentityRegistry
from .locking import KeyedLock
from .payouts import PayoutGateway
from .currency import progress_percent
from .logging_config import get_logger, log_action


class CampaignStatus(Enum):
    """Campaign lifecycle states"""
    ACTIVE = "active"              # Accepting contributions
    GOAL_REACHED = "goal_reached"  # Goal met; awaiting the creator's withdrawal
    WITHDRAWN = "withdrawn"        # Funds released to the creator (terminal)


_DATETIME_FIELDS = ('goal_reached_at', 'withdrawn_at')


@dataclass
class Campaign(StorageRecord):
    """
    Fundraising campaign with its escrowed total
    """
    id: int
    title: str
    description: str
    creator: str
    goal_amount: int
    funds_raised: int = 0
    status: CampaignStatus = CampaignStatus.ACTIVE
    contribution_count: int = 0
    pending_withdrawal: bool = False  # Reserved while a payout is in flight
    payout_reference: Optional[str] = None
    goal_reached_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    @property
    def can_withdraw(self) -> bool:
        return self.status == CampaignStatus.GOAL_REACHED and not self.pending_withdrawal

    @property
    def progress_percent(self) -> float:
        return progress_percent(self.funds_raised, self.goal_amount)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['status'] = self.status.value
        for key in _DATETIME_FIELDS:
            value = getattr(self, key)
            result[key] = value.isoformat() if value else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Campaign':
        data = dict(data)
        data['status'] = CampaignStatus(data['status'])
        for key in _DATETIME_FIELDS:
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)


@dataclass
class Contribution(StorageRecord):
    """Ledger entry for one accepted contribution"""
    campaign_id: int
    contributor: str
    amount: int
    resulting_total: int
    sequence: int  # 1-based position within the campaign


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", {"field": field_name})
    return value.strip()


def _require_positive_amount(value: Any, field_name: str) -> int:
    # bool is an int subclass; True must not pass as 1 unit
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{field_name} must be an integer number of smallest units",
            {"field": field_name, "value": repr(value)}
        )
    if value <= 0:
        raise ValidationError(f"{field_name} must be positive", {"field": field_name, "value": value})
    return value


def _holder(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _coerce_campaign_id(campaign_id: Any) -> int:
    if isinstance(campaign_id, bool):
        raise ValidationError("Campaign id must be an integer", {"campaign_id": campaign_id})
    try:
        return int(campaign_id)
    except (TypeError, ValueError):
        raise ValidationError("Campaign id must be an integer", {"campaign_id": repr(campaign_id)})


class CampaignLedger:
    """
    Owns campaign records and their escrow state
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        identity_registry: IdentityRegistry,
        payout_gateway: PayoutGateway,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.identity_registry = identity_registry
        self.payout_gateway = payout_gateway
        self.campaigns_table = "campaigns"
        self.contributions_table = "contributions"
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("escrow.campaigns")

        self._campaign_locks = KeyedLock()
        self._id_lock = threading.Lock()
        self._last_id = self._load_last_id()

        for campaign in self.list_pending_withdrawals():
            self.logger.warning(
                f"Campaign {campaign.id} has an unresolved withdrawal reservation "
                f"({campaign.payout_reference}); it stays blocked until resolved"
            )

    def create_campaign(self, creator: str, title: str, description: str, goal_amount: int) -> int:
        """
        Open a new campaign

        Args:
            creator: Holder opening the campaign; must be verified or the admin
            title: Campaign title
            description: Campaign description
            goal_amount: Funding goal in smallest units

        Returns:
            The new campaign id (ids start at 1)

        Raises:
            ValidationError: Empty text or non-positive goal
            AuthorizationError: Creator is neither verified nor the admin
        """
        creator = _require_text(creator, "creator")
        title = _require_text(title, "title")
        description = _require_text(description, "description")
        goal_amount = _require_positive_amount(goal_amount, "goal_amount")

        if not (self.identity_registry.is_admin(creator) or self.identity_registry.is_verified(creator)):
            log_action(
                self.logger, "warning", "Campaign creation denied: identity not verified",
                user_id=creator, action="create_campaign_denied"
            )
            raise AuthorizationError(
                "Identity verification is required to create campaigns", {"creator": creator}
            )

        with self._id_lock:
            campaign_id = self._last_id + 1
            now = datetime.now(timezone.utc)
            campaign = Campaign(
                id=campaign_id,
                created_at=now,
                updated_at=now,
                title=title,
                description=description,
                creator=creator,
                goal_amount=goal_amount
            )

            with self.storage.atomic():
                self._save_campaign(campaign)
                self.audit_trail.log_event(
                    event_type=AuditEventType.CAMPAIGN_CREATED,
                    entity_type="campaign",
                    entity_id=str(campaign_id),
                    user_id=creator,
                    metadata={
                        "title": title,
                        "goal_amount": str(goal_amount)
                    }
                )

            # Only a committed campaign consumes its id
            self._last_id = campaign_id

        log_action(
            self.logger, "info", f"Campaign created: {campaign_id}",
            user_id=creator, action="create_campaign", resource=f"campaign:{campaign_id}",
            extra={"goal_amount": goal_amount}
        )
        self._publish(DomainEvent.CAMPAIGN_CREATED, campaign, creator, {
            "creator": creator,
            "title": title,
            "goal_amount": goal_amount
        })

        return campaign_id

    def contribute(self, campaign_id: int, contributor: str, amount: int) -> int:
        """
        Add funds to an active campaign

        Reaching the goal flips the campaign to GOAL_REACHED in the same commit
        as the new total.

        Returns:
            The campaign's new total

        Raises:
            NotFoundError: Unknown campaign
            ValidationError: Non-positive amount
            InvalidStateError: Campaign is no longer ACTIVE
        """
        campaign_id = _coerce_campaign_id(campaign_id)
        contributor = _require_text(contributor, "contributor")

        with self._campaign_locks.hold(campaign_id):
            campaign = self._require_campaign(campaign_id)
            amount = _require_positive_amount(amount, "amount")

            if not campaign.is_active:
                raise InvalidStateError(
                    f"Campaign {campaign_id} is {campaign.status.value} and no longer accepts contributions",
                    {"campaign_id": campaign_id, "status": campaign.status.value}
                )

            now = datetime.now(timezone.utc)
            campaign.funds_raised += amount
            campaign.contribution_count += 1
            campaign.updated_at = now
            goal_reached = campaign.funds_raised >= campaign.goal_amount
            if goal_reached:
                campaign.status = CampaignStatus.GOAL_REACHED
                campaign.goal_reached_at = now

            contribution = Contribution(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                campaign_id=campaign_id,
                contributor=contributor,
                amount=amount,
                resulting_total=campaign.funds_raised,
                sequence=campaign.contribution_count
            )

            with self.storage.atomic():
                self._save_campaign(campaign)
                self.storage.save(self.contributions_table, contribution.id, contribution.to_dict())
                self.audit_trail.log_event(
                    event_type=AuditEventType.CONTRIBUTION_MADE,
                    entity_type="campaign",
                    entity_id=str(campaign_id),
                    user_id=contributor,
                    metadata={
                        "contribution_id": contribution.id,
                        "amount": str(amount),
                        "total": str(campaign.funds_raised),
                        "goal_reached": goal_reached
                    }
                )

        log_action(
            self.logger, "info", f"Contribution to campaign {campaign_id}",
            user_id=contributor, action="contribute", resource=f"campaign:{campaign_id}",
            extra={"amount": amount, "total": campaign.funds_raised, "status": campaign.status.value}
        )
        self._publish(DomainEvent.CONTRIBUTION_MADE, campaign, contributor, {
            "contributor": contributor,
            "amount": amount,
            "total": campaign.funds_raised,
            "status": campaign.status.value
        })

        return campaign.funds_raised

    def withdraw(self, campaign_id: int, requester: str) -> int:
        """
        Release a funded campaign's total to its creator, exactly once

        Two-phase: the campaign is first reserved (``pending_withdrawal``),
        the payout gateway moves the value, then the withdrawal is finalized.
        If the transfer fails the reservation is released and the campaign
        stays GOAL_REACHED.

        Returns:
            The amount transferred

        Raises:
            NotFoundError: Unknown campaign
            AuthorizationError: Requester is not the creator
            InvalidStateError: Goal not reached, already withdrawn, or a
                withdrawal is already in progress
            TransferError: The payout did not complete
            TransferOutcomeUnknownError: The payout may have completed; the
                reservation is kept for ``resolve_pending_withdrawal``
        """
        campaign_id = _coerce_campaign_id(campaign_id)
        requester = _holder(requester)

        with self._campaign_locks.hold(campaign_id):
            campaign = self._require_campaign(campaign_id)

            if requester != campaign.creator:
                log_action(
                    self.logger, "warning", f"Withdrawal denied for campaign {campaign_id}",
                    user_id=requester, action="withdraw_denied", resource=f"campaign:{campaign_id}"
                )
                raise AuthorizationError(
                    "Only the campaign creator may withdraw funds",
                    {"campaign_id": campaign_id, "requester": requester}
                )

            if campaign.status != CampaignStatus.GOAL_REACHED:
                raise InvalidStateError(
                    f"Campaign {campaign_id} is {campaign.status.value}; funds can only be withdrawn once the goal is reached",
                    {"campaign_id": campaign_id, "status": campaign.status.value}
                )

            if campaign.pending_withdrawal:
                raise InvalidStateError(
                    f"A withdrawal for campaign {campaign_id} is already in progress",
                    {"campaign_id": campaign_id, "payout_reference": campaign.payout_reference}
                )

            amount = campaign.funds_raised
            reference = f"campaign-{campaign_id}-withdrawal"

            # Phase 1: reserve
            campaign.pending_withdrawal = True
            campaign.payout_reference = reference
            campaign.updated_at = datetime.now(timezone.utc)
            with self.storage.atomic():
                self._save_campaign(campaign)

            try:
                receipt = self.payout_gateway.transfer(campaign.creator, amount, reference)
            except TransferOutcomeUnknownError:
                # The value may have moved; only an administrator can settle this
                log_action(
                    self.logger, "error",
                    f"Payout outcome unknown for campaign {campaign_id}; reservation {reference} kept pending",
                    user_id=requester, action="withdraw_outcome_unknown", resource=f"campaign:{campaign_id}",
                    extra={"amount": amount}
                )
                raise
            except Exception as e:
                # Phase 2b: the value did not move; release the reservation
                self._release_reservation(campaign, requester, str(e))
                if isinstance(e, TransferError):
                    raise
                raise TransferError(
                    "Payout failed", {"campaign_id": campaign_id, "cause": str(e)}
                ) from e

            # Phase 2a: finalize
            self._finalize_withdrawal(campaign, requester, receipt.transfer_id)

        log_action(
            self.logger, "info", f"Funds withdrawn from campaign {campaign_id}",
            user_id=requester, action="withdraw", resource=f"campaign:{campaign_id}",
            extra={"amount": amount, "transfer_id": receipt.transfer_id}
        )
        self._publish(DomainEvent.FUNDS_WITHDRAWN, campaign, requester, {
            "creator": campaign.creator,
            "amount": amount
        })

        return amount

    def resolve_pending_withdrawal(self, actor: str, campaign_id: int, transferred: bool) -> Campaign:
        """
        Settle a reservation left behind when the process stopped between the
        payout and its finalization (administrator only)

        Args:
            actor: Must be the administrator
            campaign_id: Campaign holding the reservation
            transferred: Whether the payout service confirms the value moved

        Returns:
            The updated campaign (WITHDRAWN if transferred, else GOAL_REACHED)
        """
        actor = _holder(actor)
        if not self.identity_registry.is_admin(actor):
            raise AuthorizationError(
                "Only the administrator may resolve withdrawals", {"actor": actor}
            )
        campaign_id = _coerce_campaign_id(campaign_id)

        with self._campaign_locks.hold(campaign_id):
            campaign = self._require_campaign(campaign_id)
            if not campaign.pending_withdrawal:
                raise InvalidStateError(
                    f"Campaign {campaign_id} has no pending withdrawal",
                    {"campaign_id": campaign_id, "status": campaign.status.value}
                )

            if transferred:
                self._finalize_withdrawal(
                    campaign, actor, campaign.payout_reference,
                    event_type=AuditEventType.WITHDRAWAL_RESOLVED
                )
            else:
                self._release_reservation(
                    campaign, actor, "resolved as not transferred",
                    event_type=AuditEventType.WITHDRAWAL_RESOLVED
                )

        if transferred:
            self._publish(DomainEvent.FUNDS_WITHDRAWN, campaign, actor, {
                "creator": campaign.creator,
                "amount": campaign.funds_raised
            })
        return campaign

    def get_campaign(self, campaign_id: int) -> Campaign:
        """Get campaign by id"""
        return self._require_campaign(_coerce_campaign_id(campaign_id))

    def list_all(self) -> List[Campaign]:
        """All campaigns ordered by id ascending"""
        campaigns = [Campaign.from_dict(data) for data in self.storage.load_all(self.campaigns_table)]
        campaigns.sort(key=lambda c: c.id)
        return campaigns

    def get_contributions(self, campaign_id: int) -> List[Contribution]:
        """Accepted contributions of a campaign, oldest first"""
        campaign_id = _coerce_campaign_id(campaign_id)
        self._require_campaign(campaign_id)
        entries = [
            Contribution.from_dict(data)
            for data in self.storage.find(self.contributions_table, {"campaign_id": campaign_id})
        ]
        entries.sort(key=lambda c: c.sequence)
        return entries

    def escrow_balance(self) -> int:
        """Funds currently held: totals of campaigns not yet withdrawn"""
        return sum(c.funds_raised for c in self.list_all() if c.status != CampaignStatus.WITHDRAWN)

    def list_pending_withdrawals(self) -> List[Campaign]:
        """Campaigns with an unresolved withdrawal reservation"""
        return [c for c in self.list_all() if c.pending_withdrawal]

    def _finalize_withdrawal(
        self,
        campaign: Campaign,
        actor: str,
        transfer_id: Optional[str],
        event_type: AuditEventType = AuditEventType.FUNDS_WITHDRAWN
    ) -> None:
        now = datetime.now(timezone.utc)
        campaign.status = CampaignStatus.WITHDRAWN
        campaign.pending_withdrawal = False
        campaign.withdrawn_at = now
        campaign.updated_at = now

        try:
            with self.storage.atomic():
                self._save_campaign(campaign)
                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="campaign",
                    entity_id=str(campaign.id),
                    user_id=actor,
                    metadata={
                        "creator": campaign.creator,
                        "amount": str(campaign.funds_raised),
                        "transfer_id": transfer_id,
                        "payout_reference": campaign.payout_reference
                    }
                )
        except Exception:
            # The value already moved; the stored reservation marks this for resolution
            self.logger.error(
                f"Payout for campaign {campaign.id} completed but finalization failed; "
                f"reservation {campaign.payout_reference} left pending",
                exc_info=True
            )
            raise

    def _release_reservation(
        self,
        campaign: Campaign,
        actor: str,
        reason: str,
        event_type: AuditEventType = AuditEventType.WITHDRAWAL_FAILED
    ) -> None:
        reference = campaign.payout_reference
        campaign.pending_withdrawal = False
        campaign.payout_reference = None
        campaign.updated_at = datetime.now(timezone.utc)

        with self.storage.atomic():
            self._save_campaign(campaign)
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="campaign",
                entity_id=str(campaign.id),
                user_id=actor,
                metadata={
                    "payout_reference": reference,
                    "reason": reason
                }
            )

        log_action(
            self.logger, "warning", f"Withdrawal reservation released for campaign {campaign.id}",
            user_id=actor, action=event_type.value, resource=f"campaign:{campaign.id}",
            extra={"reason": reason}
        )

    def _require_campaign(self, campaign_id: int) -> Campaign:
        data = self.storage.load(self.campaigns_table, str(campaign_id))
        if not data:
            raise NotFoundError(f"Campaign {campaign_id} not found", {"campaign_id": campaign_id})
        return Campaign.from_dict(data)

    def _save_campaign(self, campaign: Campaign) -> None:
        self.storage.save(self.campaigns_table, str(campaign.id), campaign.to_dict())

    def _load_last_id(self) -> int:
        ids = [data['id'] for data in self.storage.load_all(self.campaigns_table)]
        return max(ids, default=0)

    def _publish(self, event_type: DomainEvent, campaign: Campaign, actor: str, data: Dict[str, Any]) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(EventPayload(
                event_type=event_type,
                entity_type="campaign",
                entity_id=str(campaign.id),
                actor=actor,
                data=data
            ))
