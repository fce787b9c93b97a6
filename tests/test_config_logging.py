"""
Tests for configuration and structured logging
"""

import json
import logging

from installment_book import config as config_module
from installment_book.config import InstallmentBookConfig, get_config, reload_config
from installment_book.logging_config import JSONFormatter, setup_logging, get_logger, log_action


class TestConfig:
    """Test pydantic-settings configuration"""

    def test_defaults(self):
        settings = InstallmentBookConfig()

        assert settings.storage_backend == "sqlite"
        assert settings.currency_symbol == "₹"
        assert settings.slots_per_file == 84
        assert settings.display_date_format == "%d/%m/%Y"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("INSTALLMENT_BOOK_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("INSTALLMENT_BOOK_SLOTS_PER_FILE", "100")

        settings = InstallmentBookConfig()
        assert settings.storage_backend == "memory"
        assert settings.slots_per_file == 100

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("INSTALLMENT_BOOK_LOG_LEVEL", "DEBUG")
        try:
            reloaded = reload_config()
            assert reloaded.log_level == "DEBUG"
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestLogging:
    """Test structured log output"""

    def test_json_formatter(self):
        record = logging.LogRecord("installment_book.ledger", logging.INFO, __file__, 1,
                                   "Recorded collection", None, None)
        record.loan_id = "LOAN001"
        record.action = "payment_recorded"

        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "installment_book.ledger"
        assert data["message"] == "Recorded collection"
        assert data["loan_id"] == "LOAN001"
        assert data["action"] == "payment_recorded"
        assert "resource" not in data

    def test_log_action_attaches_fields(self, caplog):
        logger = get_logger("installment_book.test")
        logger.propagate = True
        with caplog.at_level(logging.INFO, logger="installment_book.test"):
            log_action(logger, "info", "Loan created", loan_id="LOAN001",
                       action="loan_created", extra={"account_no": "101"})

        record = caplog.records[-1]
        assert record.loan_id == "LOAN001"
        assert record.action == "loan_created"
        assert record.extra == {"account_no": "101"}

    def test_setup_logging(self, tmp_path):
        log_file = tmp_path / "book.log"
        logger = setup_logging(level="DEBUG", logger_name="installment_book.setup_test",
                               log_file=str(log_file))

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not logger.propagate

        logger.info("hello")
        logger.handlers[0].flush()
        assert json.loads(log_file.read_text().strip())["message"] == "hello"

        text_logger = setup_logging(logger_name="installment_book.setup_test", log_format="text")
        assert len(text_logger.handlers) == 1
        assert not isinstance(text_logger.handlers[0].formatter, JSONFormatter)
