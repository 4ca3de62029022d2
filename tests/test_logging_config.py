"""Tests for logging setup."""

import logging
from pathlib import Path

import pytest

from mcp_test_auth.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo basicConfig(force=True) after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_explicit_level(self) -> None:
        """Test an explicit, case-insensitive level."""
        logger = setup_logging("mcp_test_auth", level="debug")
        assert logger.name == "mcp_test_auth"
        assert logging.getLogger().level == logging.DEBUG

    def test_level_from_environment(self, monkeypatch) -> None:
        """Test LOG_LEVEL as the default level."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging()
        assert logging.getLogger().level == logging.ERROR

    def test_invalid_level(self) -> None:
        """Test that an unknown level name raises ValueError."""
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging(level="chatty")

    def test_httpx_request_logs_suppressed(self) -> None:
        """Test that httpx request lines stay out of INFO output."""
        setup_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_log_file(self, tmp_path: Path) -> None:
        """Test logging to a file in a new directory."""
        log_file = tmp_path / "logs" / "mcp.log"
        logger = setup_logging("mcp_test_auth", level="INFO", log_file=log_file)

        logger.info("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "written to file" in log_file.read_text()
