# stockledger/core/logging_setup.py
from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(settings) -> Optional[Path]:
    """
    Console logging always, rotating file logging when LOG_FILE is set.
    Safe to call more than once (handlers are not duplicated).
    Returns the log file path, if any.
    """
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)
    fmt = logging.Formatter(_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_stockledger", False) for h in root.handlers):
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(fmt)
        ch._stockledger = True
        root.addHandler(ch)

    log_path: Optional[Path] = None
    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        already = any(
            isinstance(h, logging.handlers.RotatingFileHandler)
            and getattr(h, "baseFilename", "") == str(log_path.resolve())
            for h in root.handlers)
        if not already:
            fh = logging.handlers.RotatingFileHandler(log_path,
                                                      maxBytes=5_000_000,
                                                      backupCount=3,
                                                      encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)

    # uvicorn keeps its own handlers; only align the level
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)

    # chatty at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return log_path
