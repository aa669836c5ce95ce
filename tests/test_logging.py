from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gocars_batch._logging import ROOT_LOGGER, get_logger, level_for_flags, setup_logging


def _gocars_handlers() -> list[logging.Handler]:
    root = logging.getLogger(ROOT_LOGGER)
    return [item for item in root.handlers if hasattr(item, "_gocars_handler_id")]


def test_level_for_flags() -> None:
    assert level_for_flags() is None
    assert level_for_flags(verbose=True) == logging.INFO
    assert level_for_flags(verbose=True, debug=True) == logging.DEBUG


def test_setup_logging_reconfigures_without_stacking(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    log_file = tmp_path / "logs" / "gocars.log"
    monkeypatch.setenv("GOCARS_LOG_LEVEL", "error")
    monkeypatch.setenv("GOCARS_LOG_FILE", str(log_file))

    setup_logging()
    setup_logging()

    handlers = _gocars_handlers()
    assert len(handlers) == 2
    assert logging.getLogger(ROOT_LOGGER).level == logging.INFO

    get_logger("tests").info("lifecycle_event value=1")
    for handler in handlers:
        handler.flush()
    assert "lifecycle_event value=1" in log_file.read_text(encoding="utf-8")

    monkeypatch.delenv("GOCARS_LOG_FILE")
    setup_logging(level=logging.WARNING)
    assert len(_gocars_handlers()) == 1
    assert logging.getLogger(ROOT_LOGGER).level == logging.WARNING
