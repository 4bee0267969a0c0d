"""
Tests for logging configuration.

Tests for panelforge/core/logging_config.py and panelforge/core/env_loader.py
"""

import logging

from panelforge.core import env_loader
from panelforge.core.logging_config import LogContext, LogLevel, get_logger, job_logger, setup_logging


class TestLogging:
    """Tests for logger setup."""

    def test_loggers_namespaced(self):
        assert get_logger("dispatch.breaker").name == "panelforge.dispatch.breaker"
        assert get_logger("panelforge.main").name == "panelforge.main"

    def test_level_from_name(self):
        assert LogLevel.from_name("debug") == LogLevel.DEBUG
        assert LogLevel.from_name("nonsense") == LogLevel.INFO

    def test_log_file_written(self, temp_dir):
        log_file = temp_dir / "logs" / "run.log"
        setup_logging(level=LogLevel.INFO, log_file=log_file, console_output=False)

        get_logger("tests").info("hello from the test")
        for handler in logging.getLogger("panelforge").handlers:
            handler.flush()

        assert "hello from the test" in log_file.read_text(encoding="utf-8")
        setup_logging()

    def test_log_context_restores_level(self):
        logger = get_logger("tests.context")
        before = logger.level

        with LogContext(logger, LogLevel.ERROR):
            assert logger.level == logging.ERROR

        assert logger.level == before


class TestEnvLoader:
    """Tests for env_loader."""

    def test_get_env_fallback(self, monkeypatch):
        monkeypatch.delenv("PANELFORGE_RENDER_TOKEN", raising=False)
        monkeypatch.setenv("RENDER_API_TOKEN", "secret")

        assert env_loader.get_render_api_token() == "secret"

    def test_dotenv_file_loaded(self, monkeypatch, temp_dir):
        env_file = temp_dir / ".env"
        env_file.write_text("PANELFORGE_TEST_VALUE=from-file\n", encoding="utf-8")
        monkeypatch.setattr(env_loader, "_env_loaded", False)
        monkeypatch.delenv("PANELFORGE_TEST_VALUE", raising=False)

        assert env_loader.ensure_env_loaded(env_file) is True
        assert env_loader.get_env("PANELFORGE_TEST_VALUE") == "from-file"
        monkeypatch.delenv("PANELFORGE_TEST_VALUE", raising=False)


class TestJobLogger:
    """Tests for job-scoped loggers."""

    def test_prefixes_job_id(self, caplog):
        log = job_logger(get_logger("tests.job"), "abc123")

        with caplog.at_level(logging.INFO, logger="panelforge"):
            log.info("rendering")

        assert "[job abc123] rendering" in caplog.text
