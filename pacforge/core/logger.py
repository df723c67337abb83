# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for pacforge.

Components log through ``logging.getLogger("pacforge.<component>")``;
this module attaches console and rotating file handlers to the
``pacforge`` logger hierarchy.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional


class PacforgeLogger:
    """
    Handler configuration for one logger name.

    Features:
    - Console and file logging
    - Automatic log rotation
    - Structured log format with timestamps
    """

    def __init__(
        self,
        name: str = "pacforge",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True,
    ):
        self.name = name
        self.logger = logging.getLogger(name)
        self.log_file: Optional[Path] = None

        self.logger.handlers.clear()
        self.logger.setLevel(self._parse_level(level))

        console_formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(name)s:%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        file_formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        if console_output:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(console_formatter)
            console_handler.setLevel(self._parse_level(level))
            self.logger.addHandler(console_handler)

        if file_output:
            if log_dir is None:
                log_dir = Path.home() / ".cache" / "pacforge" / "logs"

            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = log_dir / f"{name}.log"

            # Rotate after 10MB, keep 5 backup files
            file_handler = RotatingFileHandler(
                self.log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(logging.DEBUG)
            self.logger.addHandler(file_handler)

    def _parse_level(self, level: str) -> int:
        """Convert string level to logging constant"""
        levels = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return levels.get(level.upper(), logging.INFO)

    def set_level(self, level: str):
        """Change log level dynamically"""
        self.logger.setLevel(self._parse_level(level))

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)


_loggers: Dict[str, PacforgeLogger] = {}


def get_logger(
    name: str = "pacforge",
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    file_output: Optional[bool] = None,
) -> PacforgeLogger:
    """
    Get or create a configured logger.

    Args:
        name: Logger name
        level: Log level (defaults to PACFORGE_LOG_LEVEL or INFO)
        log_dir: Directory for the rotating log file
        file_output: Force file logging on/off (PACFORGE_NO_FILE_LOGS otherwise)

    Returns:
        PacforgeLogger instance
    """
    if name not in _loggers:
        log_level = level or os.getenv("PACFORGE_LOG_LEVEL", "INFO")

        if file_output is None:
            file_output = os.getenv("PACFORGE_NO_FILE_LOGS", "false").lower() != "true"

        _loggers[name] = PacforgeLogger(
            name=name,
            level=log_level,
            log_dir=log_dir,
            file_output=file_output,
        )

    return _loggers[name]


def configure_logging(config) -> PacforgeLogger:
    """Configure the ``pacforge`` logger hierarchy from a PacforgeConfig."""
    existing = _loggers.pop("pacforge", None)
    if existing:
        existing.close()
    return get_logger(
        "pacforge",
        level=config.observability.log_level,
        log_dir=config.paths.log_dir,
        file_output=config.observability.file_logs
        and os.getenv("PACFORGE_NO_FILE_LOGS", "false").lower() != "true",
    )
