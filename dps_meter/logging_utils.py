from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

TRACE_LOGGER_NAME = "DPSMeter.Trace"
TRACE_FILENAME = "dps_trace.log"
TRACE_MAX_BYTES = 512 * 1024


def build_rotating_trace_handler(
    log_dir: Path,
    filename: str = TRACE_FILENAME,
    *,
    retention: int,
    max_bytes: int = TRACE_MAX_BYTES,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler for the per-hit trace log."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(formatter or logging.Formatter("%(asctime)s %(message)s"))
    handler.setLevel(logging.DEBUG)
    return handler


def attach_trace_handler(handler: logging.Handler) -> logging.Logger:
    trace = logging.getLogger(TRACE_LOGGER_NAME)
    trace.setLevel(logging.DEBUG)
    trace.propagate = False
    trace.addHandler(handler)
    return trace


def detach_trace_handler(handler: Optional[logging.Handler]) -> None:
    if handler is None:
        return
    trace = logging.getLogger(TRACE_LOGGER_NAME)
    trace.removeHandler(handler)
    handler.close()
    if not trace.handlers:
        trace.setLevel(logging.NOTSET)
        trace.propagate = True
