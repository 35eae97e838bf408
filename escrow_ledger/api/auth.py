"""
System wiring and caller authentication dependencies
"""

import threading
from typing import Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import create_storage
from ..audit import AuditTrail
from ..events import EventDispatcher, EventRecorder
from ..identity import IdentityRegistry
from ..campaigns import CampaignLedger
from ..payouts import PayoutGateway, InMemoryPayoutGateway, HttpPayoutGateway
from ..currency import Denomination
from ..errors import AuthenticationError
from ..config import EscrowConfig, get_config


class EscrowSystem:
    """Registry, ledger and their collaborators built from one configuration"""

    def __init__(self, config: Optional[EscrowConfig] = None, payout_gateway: Optional[PayoutGateway] = None):
        self.config = config or get_config()
        self.denomination = Denomination.from_code(self.config.currency)

        self.storage = create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage)

        # Recent committed events, served by /audit/feed
        self.event_dispatcher = EventDispatcher()
        self.event_recorder = EventRecorder()
        self.event_dispatcher.subscribe_all(self.event_recorder)

        self.identity_registry = IdentityRegistry(
            self.storage, self.audit_trail, self.config.admin_holder, self.event_dispatcher
        )
        self.payout_gateway = payout_gateway or self._create_payout_gateway()
        self.campaign_ledger = CampaignLedger(
            self.storage, self.audit_trail, self.identity_registry,
            self.payout_gateway, self.event_dispatcher
        )

    def _create_payout_gateway(self) -> PayoutGateway:
        """Create payout gateway based on configuration"""
        if not self.config.payout_url:
            return InMemoryPayoutGateway()

        return HttpPayoutGateway(
            base_url=self.config.payout_url,
            timeout=self.config.payout_timeout,
            api_key=self.config.payout_api_key or None
        )

    def close(self) -> None:
        self.payout_gateway.close()
        self.storage.close()


_escrow_system: Optional[EscrowSystem] = None
_system_lock = threading.Lock()


# Dependency to get the escrow system
def get_escrow_system() -> EscrowSystem:
    global _escrow_system
    with _system_lock:
        if _escrow_system is None:
            _escrow_system = EscrowSystem()
        return _escrow_system


security = HTTPBearer(auto_error=False)


def get_current_holder(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_holder_id: Optional[str] = Header(None),
    system: EscrowSystem = Depends(get_escrow_system)
) -> str:
    """Resolve the calling holder from a bearer JWT, or X-Holder-Id when auth is off"""
    config = system.config

    if not config.auth_enabled:
        if not x_holder_id or not x_holder_id.strip():
            raise AuthenticationError("X-Holder-Id header is required")
        return x_holder_id.strip()

    if not credentials:
        raise AuthenticationError("Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    holder = payload.get("sub")
    if not holder:
        raise AuthenticationError("Invalid token")
    return holder
