"""
Tests for payout gateways
"""

import json
import pytest
import httpx

from escrow_ledger.payouts import InMemoryPayoutGateway, HttpPayoutGateway, PayoutReceipt
from escrow_ledger.errors import TransferError, TransferOutcomeUnknownError


class TestInMemoryPayoutGateway:
    """Test the in-process payout book"""

    def setup_method(self):
        """Set up test fixtures"""
        self.gateway = InMemoryPayoutGateway()

    def test_transfer_credits_recipient(self):
        """Test in-memory transfers credit the recipient"""
        receipt = self.gateway.transfer("alice", 1100, "campaign-1-withdrawal")

        assert isinstance(receipt, PayoutReceipt)
        assert receipt.amount == 1100
        assert receipt.reference == "campaign-1-withdrawal"
        assert self.gateway.balance_of("alice") == 1100
        assert self.gateway.balance_of("bob") == 0

    def test_fail_next_fails_once(self):
        """Test fail_next fails a single transfer"""
        self.gateway.fail_next("maintenance")

        with pytest.raises(TransferError):
            self.gateway.transfer("alice", 10, "ref-1")
        assert self.gateway.balance_of("alice") == 0
        assert self.gateway.receipts == []

        self.gateway.transfer("alice", 10, "ref-2")
        assert self.gateway.balance_of("alice") == 10


class TestHttpPayoutGateway:
    """Test the REST payout client against a mock transport"""

    def _gateway(self, handler, api_key=None):
        return HttpPayoutGateway(
            base_url="https://payouts.example/",
            timeout=2.0,
            api_key=api_key,
            transport=httpx.MockTransport(handler)
        )

    def test_successful_transfer(self):
        """Test a successful REST transfer"""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(201, json={"transfer_id": "tx-42"})

        gateway = self._gateway(handler, api_key="secret")
        receipt = gateway.transfer("alice", 10 ** 21, "campaign-1-withdrawal")

        assert receipt.transfer_id == "tx-42"
        assert seen["url"] == "https://payouts.example/transfers"
        # Amount travels as text so wide wei values keep full precision
        assert seen["body"] == {
            "recipient": "alice",
            "amount": "1000000000000000000000",
            "reference": "campaign-1-withdrawal"
        }
        assert seen["headers"]["Authorization"] == "Bearer secret"
        assert seen["headers"]["Idempotency-Key"] == "campaign-1-withdrawal"
        gateway.close()

    def test_rejection_raises(self):
        """Test a 4xx answer is a definite refusal"""
        gateway = self._gateway(lambda request: httpx.Response(422, json={"error": "bad account"}))

        with pytest.raises(TransferError) as exc_info:
            gateway.transfer("alice", 10, "ref")

        assert exc_info.value.details["status"] == 422
        assert not isinstance(exc_info.value, TransferOutcomeUnknownError)

    def test_server_error_outcome_unknown(self):
        """Test a 5xx answer leaves the outcome unknown"""
        gateway = self._gateway(lambda request: httpx.Response(503))
        with pytest.raises(TransferOutcomeUnknownError) as exc_info:
            gateway.transfer("alice", 10, "ref")

        assert exc_info.value.details["status"] == 503

    def test_connection_error_raises(self):
        """Test a refused connection is a definite refusal"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = self._gateway(handler)
        with pytest.raises(TransferError) as exc_info:
            gateway.transfer("alice", 10, "ref")
        assert not isinstance(exc_info.value, TransferOutcomeUnknownError)

    def test_connect_timeout_is_definite(self):
        """Test a connect timeout is a definite refusal"""
        def handler(request):
            raise httpx.ConnectTimeout("connect timed out", request=request)

        gateway = self._gateway(handler)
        with pytest.raises(TransferError) as exc_info:
            gateway.transfer("alice", 10, "ref")
        assert not isinstance(exc_info.value, TransferOutcomeUnknownError)

    def test_read_timeout_outcome_unknown(self):
        """Test a read timeout leaves the outcome unknown"""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = self._gateway(handler)
        with pytest.raises(TransferOutcomeUnknownError):
            gateway.transfer("alice", 10, "ref")

    def test_success_without_json_body(self):
        """A 2xx is a completed transfer even when the body is unreadable"""
        gateway = self._gateway(lambda request: httpx.Response(200, text="OK"))
        receipt = gateway.transfer("alice", 10, "ref-7")

        assert receipt.transfer_id == "ref-7"

    def test_no_authorization_without_api_key(self):
        """Test no Authorization header without an API key"""
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            return httpx.Response(200, json={})

        self._gateway(handler).transfer("alice", 10, "ref")
        assert "Authorization" not in seen["headers"]

    def test_health_check(self):
        """Test payout service health check"""
        assert self._gateway(lambda request: httpx.Response(200)).health_check() is True
        assert self._gateway(lambda request: httpx.Response(500)).health_check() is False

        def unreachable(request):
            raise httpx.ConnectError("down", request=request)

        assert self._gateway(unreachable).health_check() is False
