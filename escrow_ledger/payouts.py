"""
Payout Gateway Module

Moves released escrow funds to a campaign creator. The ledger treats a
transfer as its commit point. A definite refusal surfaces as TransferError
and the withdrawal is rolled back; a failure after the request may have
been delivered surfaces as TransferOutcomeUnknownError and the withdrawal
stays reserved until an administrator resolves it.
"""

import httpx
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .errors import TransferError, TransferOutcomeUnknownError

logger = logging.getLogger("escrow.payouts")

# Failures raised before any request bytes left the client
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.UnsupportedProtocol)


@dataclass
class PayoutReceipt:
    """Proof that a transfer completed"""
    transfer_id: str
    recipient: str
    amount: int  # smallest units
    reference: str
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: float = 0.0


class PayoutGateway(ABC):
    """Destination for released campaign funds"""

    @abstractmethod
    def transfer(self, recipient: str, amount: int, reference: str) -> PayoutReceipt:
        """
        Move ``amount`` smallest units to ``recipient``

        Raises:
            TransferError: If the value did not move
            TransferOutcomeUnknownError: If the value may have moved
        """
        pass

    def close(self) -> None:
        pass


class InMemoryPayoutGateway(PayoutGateway):
    """In-process payout book: credits recipients' balances"""

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._receipts: List[PayoutReceipt] = []
        self._lock = threading.Lock()
        self._fail_next: Optional[str] = None

    def fail_next(self, reason: str = "payout rail unavailable") -> None:
        """Make the next transfer fail (used to exercise rollback paths)"""
        with self._lock:
            self._fail_next = reason

    def transfer(self, recipient: str, amount: int, reference: str) -> PayoutReceipt:
        with self._lock:
            if self._fail_next:
                reason, self._fail_next = self._fail_next, None
                logger.warning(f"Payout {reference} to {recipient} failed: {reason}")
                raise TransferError(reason, {"recipient": recipient, "reference": reference})

            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            receipt = PayoutReceipt(
                transfer_id=str(uuid.uuid4()),
                recipient=recipient,
                amount=amount,
                reference=reference
            )
            self._receipts.append(receipt)
            return receipt

    def balance_of(self, recipient: str) -> int:
        with self._lock:
            return self._balances.get(recipient, 0)

    @property
    def receipts(self) -> List[PayoutReceipt]:
        with self._lock:
            return list(self._receipts)


class HttpPayoutGateway(PayoutGateway):
    """REST client for an external settlement service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,  # Bounded: the campaign stays locked while this runs
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def transfer(self, recipient: str, amount: int, reference: str) -> PayoutReceipt:
        """POST the transfer; only a 2xx answer counts as completed"""
        headers = {"Idempotency-Key": reference}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/transfers",
                json={
                    "recipient": recipient,
                    "amount": str(amount),
                    "reference": reference
                },
                headers=headers
            )
        except _NOT_SENT as e:
            logger.error(f"Payout service unreachable for {reference}: {e}")
            raise TransferError(
                "Payout service unreachable", {"reference": reference, "cause": str(e)}
            ) from e
        except httpx.HTTPError as e:
            # The request may have reached the service before this failed
            logger.error(f"Payout {reference} outcome unknown: {e}")
            raise TransferOutcomeUnknownError(
                "Payout outcome unknown", {"reference": reference, "cause": str(e)}
            ) from e

        latency_ms = (time.time() - start) * 1000

        if response.is_server_error:
            logger.error(f"Payout service returned {response.status_code} for {reference}: {response.text}")
            raise TransferOutcomeUnknownError(
                f"Payout outcome unknown after status {response.status_code}",
                {"reference": reference, "status": response.status_code}
            )

        if not response.is_success:
            logger.warning(f"Payout service returned {response.status_code} for {reference}: {response.text}")
            raise TransferError(
                f"Payout rejected with status {response.status_code}",
                {"reference": reference, "status": response.status_code}
            )

        # The value has moved once we get a 2xx; an unreadable body must not undo that
        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(f"Payout {reference} succeeded with a non-JSON body")
            data = {}
        if not isinstance(data, dict):
            data = {}
        return PayoutReceipt(
            transfer_id=str(data.get("transfer_id") or reference),
            recipient=recipient,
            amount=amount,
            reference=reference,
            latency_ms=latency_ms
        )

    def health_check(self) -> bool:
        """Check if the payout service is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()
