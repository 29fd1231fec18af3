# =============================================================================
# tests/unit/test_logging.py
# Unit Tests for Logging Setup
# =============================================================================

import logging

import pytest
from unittest.mock import MagicMock


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test setup_logging / resolve_level"""

    def test_resolve_level(self):
        from gramsehat_core.logging.config import resolve_level

        assert resolve_level("debug") == logging.DEBUG
        assert resolve_level(logging.WARNING) == logging.WARNING
        assert resolve_level("chatty") == logging.INFO

    def test_file_logging_writes_daily_file(self, tmp_path, restore_root_logger):
        from gramsehat_core.logging import setup_logging

        log_path = setup_logging("WARNING", log_to_file=True, log_dir=tmp_path)
        logging.getLogger("gramsehat_core.test").warning("outbox escalated")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_path.parent == tmp_path
        assert log_path.name.startswith("gramsehat_")
        assert "outbox escalated" in log_path.read_text(encoding="utf-8")
        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_console_only_returns_no_path(self, restore_root_logger):
        from gramsehat_core.logging import setup_logging

        assert setup_logging(log_to_file=False) is None


class TestAssistantLogging:
    """Test that the process-wide assistant applies the configured logging"""

    def test_get_instance_applies_log_settings(self, tmp_path, monkeypatch):
        from gramsehat_core.config import AppConfig
        from gramsehat_core.offline import unified_data_service
        from gramsehat_core.offline.unified_data_service import HealthAssistant

        config = AppConfig(
            remote_provider="mock",
            db_path=tmp_path / "device.db",
            log_level="DEBUG",
            log_to_file=True,
        )
        setup = MagicMock()
        monkeypatch.setattr(unified_data_service, "load_config", lambda: config)
        monkeypatch.setattr(unified_data_service, "setup_logging", setup)
        monkeypatch.setattr(HealthAssistant, "_instance", None)

        assistant = HealthAssistant.get_instance()
        try:
            setup.assert_called_once_with("DEBUG", True)
            assert assistant.config is config
        finally:
            assistant.shutdown()
