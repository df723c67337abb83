# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for logging setup
"""

import logging

from pacforge.core.config import PacforgeConfig
from pacforge.core.logger import PacforgeLogger, configure_logging, get_logger


def test_file_logging(tmp_path):
    """Test component loggers write through the configured file handler"""
    configured = PacforgeLogger("pacforge-test", level="warning", log_dir=tmp_path, console_output=False)
    try:
        configured.logger.warning("conflict detected")
        for handler in configured.logger.handlers:
            handler.flush()

        text = configured.log_file.read_text()
        assert "conflict detected" in text
        assert configured.logger.level == logging.WARNING
    finally:
        configured.close()


def test_console_only(tmp_path):
    configured = PacforgeLogger("pacforge-console", log_dir=tmp_path, file_output=False)
    try:
        assert configured.log_file is None
        assert len(configured.logger.handlers) == 1
        configured.set_level("DEBUG")
        assert configured.logger.level == logging.DEBUG
    finally:
        configured.close()


def test_get_logger_is_cached():
    first = get_logger("pacforge-cached", file_output=False)
    assert get_logger("pacforge-cached") is first
    first.close()


def test_configure_logging_replaces_handlers(tmp_path):
    config = PacforgeConfig(
        paths={"log_dir": str(tmp_path)},
        observability={"log_level": "error", "file_logs": False},
    )
    first = configure_logging(config)
    second = configure_logging(config)
    try:
        assert first is not second
        assert second.logger.level == logging.ERROR
        assert len(second.logger.handlers) == 1
    finally:
        second.close()
