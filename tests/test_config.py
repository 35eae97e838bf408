"""
Tests for configuration and structured logging
"""

import json
import logging
import pytest

from escrow_ledger.config import EscrowConfig, reload_config, get_config
from escrow_ledger.logging_config import JSONFormatter, setup_logging, log_action


class TestEscrowConfig:
    """Test environment-based configuration"""

    def test_defaults(self):
        """Test default configuration values"""
        config = EscrowConfig(_env_file=None)
        assert config.admin_holder == "admin"
        assert config.currency == "ETH"
        assert config.auth_enabled is False
        assert config.payout_url == ""

    def test_environment_override(self, monkeypatch):
        """Test ESCROW_ environment variables override defaults"""
        monkeypatch.setenv("ESCROW_ADMIN_HOLDER", "root")
        monkeypatch.setenv("ESCROW_DATABASE_URL", "memory://")
        monkeypatch.setenv("ESCROW_AUTH_ENABLED", "true")
        monkeypatch.setenv("ESCROW_PAYOUT_TIMEOUT", "1.5")

        config = EscrowConfig(_env_file=None)
        assert config.admin_holder == "root"
        assert config.database_url == "memory://"
        assert config.auth_enabled is True
        assert config.payout_timeout == 1.5

    def test_reload(self, monkeypatch):
        """Test reloading the global configuration"""
        monkeypatch.setenv("ESCROW_CURRENCY", "USD")
        try:
            assert reload_config().currency == "USD"
            assert get_config().currency == "USD"
        finally:
            monkeypatch.delenv("ESCROW_CURRENCY")
            reload_config()


class TestStructuredLogging:
    """Test JSON log output"""

    def test_json_formatter(self):
        """Test JSON log formatting"""
        record = logging.LogRecord("escrow.campaigns", logging.INFO, __file__, 1, "Campaign created: 1", (), None)
        record.user_id = "alice"
        record.action = "create_campaign"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Campaign created: 1"
        assert entry["logger"] == "escrow.campaigns"
        assert entry["user_id"] == "alice"
        assert entry["action"] == "create_campaign"
        assert "resource" not in entry

    def test_log_action_carries_structured_fields(self, caplog):
        """Test log_action attaches structured fields"""
        logger = logging.getLogger("escrow.test")
        with caplog.at_level(logging.INFO, logger="escrow.test"):
            log_action(logger, "info", "Contribution to campaign 1", user_id="bob",
                       action="contribute", resource="campaign:1", extra={"amount": 600})

        record = caplog.records[-1]
        assert record.user_id == "bob"
        assert record.resource == "campaign:1"
        assert record.extra == {"amount": 600}

    def test_log_action_respects_level(self, caplog):
        """Test log_action uses the requested level"""
        logger = logging.getLogger("escrow.quiet")
        logger.setLevel(logging.WARNING)
        with caplog.at_level(logging.WARNING, logger="escrow.quiet"):
            log_action(logger, "info", "ignored")
        assert caplog.records == []

    def test_setup_logging_text_format(self, tmp_path):
        """Test plain text logging setup"""
        log_file = tmp_path / "escrow.log"
        logger = setup_logging("DEBUG", logger_name="escrow.setup", fmt="text", log_file=str(log_file))
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert "INFO escrow.setup: hello" in log_file.read_text()
        assert logger.propagate is False
