"""Tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from reflex_queue.config import Settings
from reflex_queue.logging import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and level after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_console_only(self, restore_root_logger: logging.Logger) -> None:
        settings = Settings(_env_file=None, log_to_file=False, log_level="WARNING")

        setup_logging(settings)

        assert not any(
            isinstance(h, RotatingFileHandler) for h in restore_root_logger.handlers
        )
        assert logging.getLogger("redis").level == logging.WARNING

    def test_repeated_setup_replaces_handlers(
        self, restore_root_logger: logging.Logger
    ) -> None:
        settings = Settings(_env_file=None, log_to_file=False)

        setup_logging(settings)
        count = len(restore_root_logger.handlers)
        setup_logging(settings)

        assert len(restore_root_logger.handlers) == count
        assert restore_root_logger.level == logging.INFO

    def test_file_handler(self, tmp_path: Path, restore_root_logger: logging.Logger) -> None:
        log_dir = tmp_path / "logs"
        settings = Settings(
            _env_file=None,
            log_to_file=True,
            log_directory=str(log_dir),
            log_file_prefix="worker",
        )

        setup_logging(settings)

        file_handlers = [
            h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert Path(file_handlers[0].baseFilename) == log_dir / "worker.log"
        assert log_dir.is_dir()


def test_get_logger_binds_events() -> None:
    log = get_logger("reflex_queue.tests")
    assert hasattr(log, "info")
    assert hasattr(log, "exception")
