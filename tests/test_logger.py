from __future__ import annotations

import logging
from pathlib import Path

from streamedit.logger import (
    LogManager,
    configure_logging,
    get_log_manager,
    install_in_memory_log_manager,
    logger,
)
from streamedit.settings.models import LoggingSettings, LogLevel


def test_in_memory_manager_captures_records() -> None:
    manager = install_in_memory_log_manager(max_entries=None)
    assert isinstance(manager, LogManager)
    assert get_log_manager() is manager
    manager.clear()

    logging.getLogger("streamedit.test").warning("plain warning message")
    logger.warning("Structured event", path="a.py")

    messages = [record.message for record in manager.get_logs()]
    assert "plain warning message" in messages
    assert any("Structured event" in m and "path=a.py" in m for m in messages)


def test_manager_respects_max_entries() -> None:
    manager = LogManager(max_entries=2)
    for i in range(5):
        manager.add_record(logging.LogRecord("x", logging.INFO, __file__, 1, f"msg {i}", None, None))

    assert [r.message for r in manager.get_logs()] == ["msg 3", "msg 4"]


def test_configure_logging_levels_and_file(tmp_path: Path) -> None:
    log_file = tmp_path / "edit.log"
    configure_logging(
        LoggingSettings(
            default_level=LogLevel.debug,
            enabled_loggers={"LiteLLM": LogLevel.error},
            file=str(log_file),
        )
    )
    try:
        assert logging.getLogger("streamedit").level == logging.DEBUG
        assert logging.getLogger("LiteLLM").level == logging.ERROR

        logging.getLogger("streamedit").info("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "written to file" in log_file.read_text(encoding="utf-8")
    finally:
        configure_logging(LoggingSettings())

    assert logging.getLogger("streamedit").level == logging.INFO
    assert not any(
        isinstance(h, logging.FileHandler) and h.baseFilename == str(log_file)
        for h in logging.getLogger().handlers
    )
