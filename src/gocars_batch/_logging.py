"""Logging setup shared by the CLI and the batch engine.

Every module logs under the ``gocars_batch`` namespace with key=value
messages. Console runs log to stderr so that stdout stays free for
reports; ``GOCARS_LOG_FILE`` adds a persistent log of run lifecycle events.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT_LOGGER = "gocars_batch"
LOG_LEVEL_ENV = "GOCARS_LOG_LEVEL"
LOG_FILE_ENV = "GOCARS_LOG_FILE"

_HANDLER_ATTR = "_gocars_handler_id"
_STDERR_HANDLER = "stderr"
_FILE_HANDLER = "file"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return ``gocars_batch.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def level_for_flags(*, verbose: bool = False, debug: bool = False) -> int | None:
    """Map the global ``--verbose``/``--debug`` flags onto a log level.

    Returns ``None`` when neither flag is set so ``GOCARS_LOG_LEVEL`` applies.
    """
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return None


def _level_from_env() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(name) if name else None
    return level if isinstance(level, int) else logging.WARNING


def _find_handler(logger: logging.Logger, handler_id: str) -> logging.Handler | None:
    return next(
        (item for item in logger.handlers if getattr(item, _HANDLER_ATTR, None) == handler_id),
        None,
    )


def _attach(logger: logging.Logger, handler: logging.Handler, handler_id: str) -> logging.Handler:
    setattr(handler, _HANDLER_ATTR, handler_id)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    return handler


def _detach(logger: logging.Logger, handler: logging.Handler, *, close: bool) -> None:
    logger.removeHandler(handler)
    if close:
        handler.close()


def _configure_stderr(logger: logging.Logger, level: int) -> None:
    handler = _find_handler(logger, _STDERR_HANDLER)
    # sys.stderr may have been swapped since the last call; the old stream may be closed
    if handler is not None and getattr(handler, "stream", None) is not sys.stderr:
        _detach(logger, handler, close=False)
        handler = None
    if handler is None:
        handler = _attach(logger, logging.StreamHandler(sys.stderr), _STDERR_HANDLER)
    handler.setLevel(level)


def _configure_file(logger: logging.Logger, stream_level: int) -> int | None:
    """Attach, retarget or drop the file handler. Returns its level."""
    handler = _find_handler(logger, _FILE_HANDLER)
    raw_path = os.environ.get(LOG_FILE_ENV, "").strip()
    if not raw_path:
        if handler is not None:
            _detach(logger, handler, close=True)
        return None

    path = Path(raw_path).expanduser().resolve()
    current = getattr(handler, "baseFilename", None)
    if handler is None or current is None or Path(current).resolve() != path:
        if handler is not None:
            _detach(logger, handler, close=True)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = _attach(logger, logging.FileHandler(path, encoding="utf-8"), _FILE_HANDLER)
    # the file always keeps lifecycle (INFO) events, even when stderr is quieter
    level = min(stream_level, logging.INFO)
    handler.setLevel(level)
    return level


def setup_logging(*, level: int | None = None) -> None:
    """Configure the ``gocars_batch`` logger.

    *level* wins over ``GOCARS_LOG_LEVEL`` (DEBUG, INFO, WARNING, ERROR);
    WARNING is the default. Safe to call repeatedly: existing handlers are
    reconfigured, never stacked.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    stream_level = level if level is not None else _level_from_env()
    _configure_stderr(logger, stream_level)
    file_level = _configure_file(logger, stream_level)
    logger.setLevel(stream_level if file_level is None else min(stream_level, file_level))
