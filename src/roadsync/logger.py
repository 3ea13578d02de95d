"""
Logging service for RoadSync.

Every service module logs through ``logging.getLogger(__name__)`` and
propagates into the ``roadsync`` logger configured here. Besides the
console and the general log files, sync passes and store fallbacks get a
log file of their own so a backlog drain can be audited after the fact.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import List, Optional, Union

import colorlog

from .config import get_config_manager

# Modules whose records also go to sync.log
SYNC_ACTIVITY_MODULES = (
    "services.sync_manager",
    "services.reconciler",
    "services.coordinator",
    "services.availability",
)

NOISY_LOGGERS = ["urllib3", "google", "grpc", "aiohttp.access", "firebase_admin"]


class SyncActivityFilter(logging.Filter):
    """Pass records emitted by the sync, reconciliation and fallback modules."""

    def __init__(self, root_name: str):
        super().__init__()
        self.prefixes = tuple(f"{root_name}.{module}" for module in SYNC_ACTIVITY_MODULES)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(self.prefixes)


class LoggerService:
    """
    Owns the handlers attached to the ``roadsync`` logger.

    Handlers:
        console     colorlog, configured level
        roadsync.log  rotating, configured level
        error.log   rotating, ERROR and above
        sync.log    rotating, sync and fallback modules only
    """

    def __init__(self, name: str = "roadsync", logs_dir: Optional[str] = None):
        self.name = name
        self.logs_dir = Path(logs_dir or self._configured_logs_dir())
        self.logger = logging.getLogger(name)
        self._setup_complete = False
        self._level_handlers: List[logging.Handler] = []

        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _configured_logs_dir() -> str:
        try:
            return get_config_manager().get_log_dir()
        except Exception:
            return os.getenv("LOG_DIR", "logs")

    @staticmethod
    def _resolve_level(level: Union[str, int, None]) -> int:
        if isinstance(level, int):
            return level
        if not level:
            return logging.INFO
        return getattr(logging, level.upper(), logging.INFO)

    def setup(self) -> None:
        """Attach handlers once; later calls are no-ops."""
        if self._setup_complete:
            return

        log_level = os.getenv("LOG_LEVEL")
        if not log_level:
            try:
                log_level = get_config_manager().get_log_level()
            except Exception:
                # Config may be invalid; logging still has to come up
                log_level = "INFO"

        self.logger.handlers.clear()
        level = self._resolve_level(log_level)
        self.logger.setLevel(level)

        console = self._console_handler(level)
        file_handlers = self._file_handlers(level)
        for handler in [console, *file_handlers]:
            self.logger.addHandler(handler)
        # Handlers that follow set_level(); error.log and sync.log keep theirs
        self._level_handlers = [console, file_handlers[0]]

        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

        self.logger.propagate = False
        self._setup_complete = True

    def _console_handler(self, level: int) -> logging.Handler:
        handler = colorlog.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(reset)s",
                datefmt="%H:%M:%S",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        )
        return handler

    def _rotating(self, filename: str, max_mb: int, backups: int) -> logging.Handler:
        return logging.handlers.RotatingFileHandler(
            self.logs_dir / filename,
            maxBytes=max_mb * 1024 * 1024,
            backupCount=backups,
            encoding="utf-8",
        )

    def _file_handlers(self, level: int) -> List[logging.Handler]:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        main_handler = self._rotating("roadsync.log", 10, 5)
        main_handler.setLevel(level)

        error_handler = self._rotating("error.log", 5, 3)
        error_handler.setLevel(logging.ERROR)

        sync_handler = self._rotating("sync.log", 5, 5)
        sync_handler.setLevel(min(level, logging.INFO))
        sync_handler.addFilter(SyncActivityFilter(self.name))

        handlers = [main_handler, error_handler, sync_handler]
        for handler in handlers:
            handler.setFormatter(formatter)
        return handlers

    def set_level(self, level: Union[str, int]) -> None:
        """Change the logger and console level at runtime, e.g. from a CLI flag."""
        if not self._setup_complete:
            self.setup()
        numeric = self._resolve_level(level)
        self.logger.setLevel(numeric)
        for handler in self._level_handlers:
            handler.setLevel(numeric)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Return the ``roadsync`` logger, or a child of it when *name* is given."""
        if not self._setup_complete:
            self.setup()

        if name:
            return logging.getLogger(f"{self.name}.{name}")
        return self.logger


_logger_service: Optional[LoggerService] = None


def get_logger_service() -> LoggerService:
    """Get the process-wide logger service, set up on first use."""
    global _logger_service
    if _logger_service is None:
        _logger_service = LoggerService()
        _logger_service.setup()
    return _logger_service


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return get_logger_service().get_logger(name)
