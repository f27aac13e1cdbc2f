from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from .settings.models import LoggingSettings


PRIMARY_LOGGERS = ("streamedit",)


@dataclass
class LogRecordEntry:
    logger_name: str
    level: int
    level_name: str
    message: str
    created: float


class LogManager:
    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._max_entries = max_entries
        self._records: list[LogRecordEntry] = []

    def add_record(self, record: logging.LogRecord) -> None:
        entry = LogRecordEntry(
            logger_name=record.name,
            level=record.levelno,
            level_name=record.levelname,
            message=record.getMessage(),
            created=record.created,
        )
        self._records.append(entry)
        if self._max_entries is not None and len(self._records) > self._max_entries:
            del self._records[0 : len(self._records) - self._max_entries]

    def get_logs(self) -> list[LogRecordEntry]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()


class _InMemoryLogHandler(logging.Handler):
    def __init__(self, manager: LogManager) -> None:
        super().__init__()
        self._manager = manager

    def emit(self, record: logging.LogRecord) -> None:
        self._manager.add_record(record)


_log_manager: Optional[LogManager] = None
_log_handler: Optional[_InMemoryLogHandler] = None
_file_handler: Optional[logging.FileHandler] = None


def install_in_memory_log_manager(max_entries: Optional[int] = None) -> LogManager:
    """Capture every record reaching the root logger (used by hosts and tests)."""
    global _log_manager, _log_handler
    if _log_manager is None:
        _log_manager = LogManager(max_entries=max_entries)
        _log_handler = _InMemoryLogHandler(_log_manager)

    root_logger = logging.getLogger()
    if _log_handler is not None and _log_handler not in root_logger.handlers:
        root_logger.addHandler(_log_handler)
    return _log_manager


def get_log_manager() -> Optional[LogManager]:
    return _log_manager


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def configure_logging(settings: "LoggingSettings") -> None:
    """Apply default and per-logger levels, and an optional log file."""
    global _file_handler

    default_level = _LEVELS.get(settings.default_level.value, logging.INFO)
    for logger_name in PRIMARY_LOGGERS:
        logging.getLogger(logger_name).setLevel(default_level)

    for logger_name, level in settings.enabled_loggers.items():
        logging.getLogger(logger_name).setLevel(_LEVELS.get(level.value, default_level))

    root_logger = logging.getLogger()
    if _file_handler is not None:
        root_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if settings.file:
        _file_handler = logging.FileHandler(settings.file, mode="a", encoding="utf-8")
        _file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(_file_handler)


logging.basicConfig(level=logging.INFO, format="%(message)s")

structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
)

logger: structlog.BoundLogger = structlog.get_logger("streamedit")


# Fix Litellm warning
warnings.filterwarnings(
    "ignore", category=UserWarning, message=r"^Pydantic serializer warnings:"
)
